"""
Interactive prompts (text, password, yes/no, choice lists)

All prompts are synchronous. Input functions are injectable so flows can be
driven without a terminal.
"""

import getpass
from typing import Any, Callable, Optional, Sequence, Tuple

from .errors import ConfigurationError

Validator = Callable[[str], Optional[str]]


class Prompter:
    """Asks the operator for values"""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        password_func: Callable[[str], str] = getpass.getpass,
        output: Callable[[str], None] = print,
        max_attempts: int = 3
    ):
        self._input = input_func
        self._password = password_func
        self._output = output
        self.max_attempts = max_attempts

    def _ask(self, reader: Callable[[str], str], message: str, validate: Optional[Validator]) -> str:
        for _ in range(self.max_attempts):
            value = reader(f"{message}: ").strip()
            error = validate(value) if validate else None
            if error is None:
                return value
            self._output(error)
        raise ConfigurationError(f"No valid value provided for: {message}")

    def text(self, message: str, validate: Optional[Validator] = None, default: Optional[str] = None) -> str:
        if default is not None:
            message = f"{message} [{default}]"
            value = self._ask(self._input, message, lambda v: validate(v or default) if validate else None)
            return value or default
        return self._ask(self._input, message, validate)

    def password(self, message: str, validate: Optional[Validator] = None) -> str:
        return self._ask(self._password, message, validate)

    def confirm(self, message: str, default: bool = True) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        answer = self._ask(
            self._input,
            f"{message} {suffix}",
            lambda v: None if v.lower() in ("", "y", "yes", "n", "no") else "Please answer yes or no",
        )
        if not answer:
            return default
        return answer.lower() in ("y", "yes")

    def select(self, message: str, choices: Sequence[Tuple[str, Any]]) -> Any:
        """
        Let the operator pick one of the choices

        Args:
            message: Question to display
            choices: (title, value) pairs

        Returns:
            Value of the chosen entry
        """
        if not choices:
            raise ConfigurationError(f"Nothing to choose from: {message}")

        self._output(message)
        for index, (title, _) in enumerate(choices, start=1):
            self._output(f"  {index}) {title}")

        def check(value: str) -> Optional[str]:
            if value == "":
                return None
            if not value.isdigit() or not 1 <= int(value) <= len(choices):
                return f"Please enter a number between 1 and {len(choices)}"
            return None

        answer = self._ask(self._input, "Choice [1]", check)
        return choices[int(answer or "1") - 1][1]


def required(message: str) -> Validator:
    """Validator rejecting empty input"""
    return lambda value: None if value else message
