from pathlib import Path

from gsc_answer_agent.config import AgentConfig
from gsc_answer_agent.main import _output_path


def test_bare_output_names_land_in_output_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "answers"))
    config = AgentConfig.from_env()

    assert _output_path("answer.md", config.output_dir) == tmp_path / "answers" / "answer.md"
    assert _output_path("reports/answer.md", config.output_dir) == Path("reports/answer.md")
    absolute = tmp_path / "elsewhere" / "answer.docx"
    assert _output_path(str(absolute), config.output_dir) == absolute
