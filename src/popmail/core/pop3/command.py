"""Typed POP3 command model."""

from dataclasses import dataclass
from typing import Tuple, Union

from popmail.utils.errors import InvalidArgumentError

from .constants import POP3Verb

Argument = Union[int, str]


@dataclass(frozen=True)
class Command:
    """One POP3 request: a verb, positional arguments and the response shape."""

    verb: POP3Verb
    args: Tuple[Argument, ...] = ()
    multiline: bool = False

    def __post_init__(self):
        if not isinstance(self.verb, POP3Verb):
            raise InvalidArgumentError(f"Unknown POP3 verb: {self.verb!r}")

        for arg in self.args:
            # bool is an int subclass but never a valid POP3 argument
            if isinstance(arg, bool) or not isinstance(arg, (int, str)):
                raise InvalidArgumentError(
                    f"{self.verb.value} argument must be int or str, got {type(arg).__name__}"
                )
            if isinstance(arg, str):
                if not arg:
                    raise InvalidArgumentError(f"{self.verb.value} argument is empty")
                if any(c in arg for c in "\r\n"):
                    raise InvalidArgumentError(
                        f"{self.verb.value} argument contains a line break"
                    )
                if " " in arg and self.verb is not POP3Verb.PASS:
                    raise InvalidArgumentError(
                        f"{self.verb.value} argument contains a space"
                    )

    def render(self) -> str:
        """Render the request line without its terminator."""
        if not self.args:
            return self.verb.value
        return " ".join([self.verb.value, *(str(arg) for arg in self.args)])

    def __str__(self) -> str:
        return self.render()
