from __future__ import annotations

import logging
from typing import Mapping, Protocol

import typer

logger = logging.getLogger(__name__)


class PromptProvider(Protocol):
    def confirm(self, question: str, *, default: bool = False) -> bool: ...

    def ask(self, question: str, *, secret: bool = False) -> str: ...

    def pause(self, message: str) -> None: ...


class TerminalPrompts:
    """Blocking prompts on the controlling terminal."""

    def confirm(self, question: str, *, default: bool = False) -> bool:
        answer = typer.confirm(question, default=default)
        logger.debug("Prompt %r answered %s", question, "yes" if answer else "no")
        return answer

    def ask(self, question: str, *, secret: bool = False) -> str:
        answer = typer.prompt(question, default="", show_default=False, hide_input=secret)
        return answer.strip()

    def pause(self, message: str) -> None:
        typer.prompt(message, default="", show_default=False, prompt_suffix=" ")


class ScriptedPrompts:
    """Pre-supplied answers for unattended runs and tests.

    Answers are looked up by exact question first, then by any key that is a
    substring of the question. Unanswered confirms fall back to their default
    and unanswered questions to an empty string.
    """

    def __init__(
        self,
        answers: Mapping[str, bool | str] | None = None,
        *,
        confirm_default: bool | None = None,
    ) -> None:
        self._answers = dict(answers or {})
        self._confirm_default = confirm_default
        self.asked: list[str] = []

    def _lookup(self, question: str) -> bool | str | None:
        if question in self._answers:
            return self._answers[question]
        for key, value in self._answers.items():
            if key in question:
                return value
        return None

    def confirm(self, question: str, *, default: bool = False) -> bool:
        self.asked.append(question)
        answer = self._lookup(question)
        if answer is None:
            return default if self._confirm_default is None else self._confirm_default
        if isinstance(answer, str):
            return answer.strip().lower().startswith("y")
        return bool(answer)

    def ask(self, question: str, *, secret: bool = False) -> str:
        self.asked.append(question)
        answer = self._lookup(question)
        return answer.strip() if isinstance(answer, str) else ""

    def pause(self, message: str) -> None:
        self.asked.append(message)
