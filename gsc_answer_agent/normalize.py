from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any, Iterable

from gsc_answer_agent.errors import UpstreamFetchError
from gsc_answer_agent.models import MetricRow, Totals


logger = logging.getLogger(__name__)


def _number(value: Any) -> float:
    # bool is an int subclass; payloads carrying true/false are treated as missing.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    number = float(value)
    return number if math.isfinite(number) else 0.0


def _ctr(value: Any) -> float:
    ctr = _number(value)
    if ctr > 1:
        ctr = ctr / 100.0
    return min(1.0, max(0.0, ctr))


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def normalize_row(raw: Any) -> MetricRow | None:
    """Coerce one raw row into a ``MetricRow`` or ``None`` when it has no usable keys.

    Non-string keys are dropped individually; the row is rejected only when no
    key survives. Missing or non-numeric metrics default to 0 and a ctr above
    1 is read as a percentage.
    """
    if raw is None:
        return None
    keys_raw = _field(raw, "keys")
    if isinstance(keys_raw, (str, bytes)) or not isinstance(keys_raw, Iterable):
        return None
    keys = tuple(key for key in keys_raw if isinstance(key, str))
    if not keys:
        return None

    return MetricRow(
        keys=keys,
        clicks=_number(_field(raw, "clicks")),
        impressions=_number(_field(raw, "impressions")),
        ctr=_ctr(_field(raw, "ctr")),
        position=_number(_field(raw, "position")),
    )


def normalize_rows(raw_rows: Iterable[Any] | None) -> tuple[list[MetricRow], int]:
    kept: list[MetricRow] = []
    dropped = 0
    for raw in raw_rows or []:
        row = normalize_row(raw)
        if row is None:
            dropped += 1
            continue
        kept.append(row)
    if dropped:
        logger.debug("Dropped %d malformed rows (kept %d).", dropped, len(kept))
    return kept, dropped


def normalize_totals(raw: Any) -> Totals:
    if raw is None:
        return Totals()
    if isinstance(raw, Totals):
        return raw
    return Totals(
        clicks=_number(_field(raw, "clicks")),
        impressions=_number(_field(raw, "impressions")),
        ctr=_ctr(_field(raw, "ctr")),
        position=_number(_field(raw, "position")),
    )


def _raise_for_error_payload(payload: Mapping) -> None:
    error = payload.get("error")
    if not error:
        return
    status = payload.get("status")
    if isinstance(error, Mapping):
        message = str(error.get("message") or error)
        status = error.get("code", status)
    else:
        message = str(error)
    status_code = status if isinstance(status, int) and not isinstance(status, bool) else None
    raise UpstreamFetchError(message, status_code=status_code)


def coerce_rows_payload(payload: Any) -> list[Any]:
    """Accept a bare row list or a Search Analytics style ``{"rows": [...]}`` response."""
    if payload is None:
        return []
    if isinstance(payload, Mapping):
        _raise_for_error_payload(payload)
        rows = payload.get("rows") or []
        return list(rows)
    return list(payload)


def coerce_totals_payload(payload: Any) -> Totals:
    if isinstance(payload, Mapping):
        _raise_for_error_payload(payload)
        if "rows" in payload:
            rows = payload.get("rows") or []
            return normalize_totals(rows[0] if rows else None)
    return normalize_totals(payload)
