"""
Confirmation gate
The yes/no decision capability injected into the reconciliation engine and
the live-fetch path. Batch mode is just a gate that always says yes.
"""

import logging
from collections import deque
from typing import Iterable, List, Tuple

import click


class ConfirmationGate:
    """Abstract interface for operator confirmation"""

    def confirm(self, prompt: str, default: bool = False) -> bool:
        """Ask a yes/no question and return the answer"""
        raise NotImplementedError

    def __call__(self, prompt: str, default: bool = False) -> bool:
        return self.confirm(prompt, default)


class InteractiveConfirmation(ConfirmationGate):
    """Blocking terminal prompt; an empty answer takes the default (no)."""

    def confirm(self, prompt: str, default: bool = False) -> bool:
        return click.confirm(prompt, default=default)


class AutoConfirmation(ConfirmationGate):
    """Batch mode: every question is answered yes."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def confirm(self, prompt: str, default: bool = False) -> bool:
        self.logger.info(f"Auto-confirmed: {prompt}")
        return True


class ScriptedConfirmation(ConfirmationGate):
    """
    Answers from a fixed script, recording every question asked.

    When the script runs out the question's default is used.
    """

    def __init__(self, answers: Iterable[bool] = ()):
        self.answers = deque(answers)
        self.asked: List[Tuple[str, bool]] = []

    def confirm(self, prompt: str, default: bool = False) -> bool:
        self.asked.append((prompt, default))
        if self.answers:
            return self.answers.popleft()
        return default


def get_confirmation_gate(yes_mode: bool) -> ConfirmationGate:
    if yes_mode:
        return AutoConfirmation()
    return InteractiveConfirmation()
