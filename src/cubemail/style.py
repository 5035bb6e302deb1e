from __future__ import annotations

from dataclasses import dataclass

from .state import SignalState

ANSI_RESET = "\x1b[0m"


@dataclass(frozen=True)
class ConsoleStyle:
    enabled: bool = True
    logo: str = "\x1b[36m"
    number: str = "\x1b[36m"
    off: str = "\x1b[30;47m"
    green: str = "\x1b[37;42m"
    red: str = "\x1b[37;41m"

    @classmethod
    def plain(cls) -> ConsoleStyle:
        return cls(enabled=False)

    @classmethod
    def for_output(cls, color_output: bool) -> ConsoleStyle:
        return cls() if color_output else cls.plain()

    def paint(self, text: str, code: str) -> str:
        if not self.enabled or not code:
            return text
        return f"{code}{text}{ANSI_RESET}"

    def state_label(self, state: SignalState) -> str:
        codes = {
            SignalState.OFF: self.off,
            SignalState.GREEN: self.green,
            SignalState.RED: self.red,
        }
        return self.paint(state.label, codes[state])

    def count(self, value: int) -> str:
        return self.paint(str(value), self.number)

    def banner(self, text: str) -> str:
        return f":: {self.paint(text, self.logo)} ::"
