from __future__ import annotations

from datetime import datetime
import logging

from nexus_installer.logging_config import attach_transcript, detach_transcript, transcript_path
from nexus_installer.prompts import ScriptedPrompts


def test_transcript_path_is_timestamped(tmp_path) -> None:
    path = transcript_path("nexus-install", directory=tmp_path, now=datetime(2025, 3, 4, 5, 6, 7))

    assert path == tmp_path / "nexus-install-20250304-050607.log"


def test_transcript_captures_debug_records(tmp_path) -> None:
    log_file = tmp_path / "run.log"
    handler = attach_transcript(log_file)
    try:
        logging.getLogger("nexus_installer.test").debug("probe detail %s", 42)
    finally:
        detach_transcript(handler)

    assert "probe detail 42" in log_file.read_text()
    assert handler not in logging.getLogger().handlers


def test_scripted_prompts_lookup() -> None:
    prompts = ScriptedPrompts({"Remove Redis?": "yes", "API Key": "  sk-123  "}, confirm_default=False)

    assert prompts.confirm("Remove Redis?") is True
    assert prompts.confirm("Remove Ollama?") is False
    assert prompts.ask("Brave Search API Key (enables web search)") == "sk-123"
    assert prompts.ask("Something else") == ""
    assert prompts.asked[-1] == "Something else"
