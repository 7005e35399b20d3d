from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ChoiceFocus:
    """Keyboard focus over the visible choices.

    Left/right wrap around, Enter selects the focused choice and the digit keys
    select a choice directly.
    """

    count: int = 0
    index: int = 0

    def reset(self, count: int) -> None:
        self.count = max(count, 0)
        self.index = 0

    def move(self, delta: int) -> int:
        if self.count == 0:
            return self.index
        self.index = (self.index + delta) % self.count
        return self.index

    def handle_key(self, key: str) -> int | None:
        """Apply ``key``; return the index to select, or None."""

        if self.count == 0:
            return None
        if key == "ArrowRight":
            self.move(1)
            return None
        if key == "ArrowLeft":
            self.move(-1)
            return None
        if key == "Enter":
            return self.index
        if key.isdigit():
            selected = int(key) - 1
            if 0 <= selected < self.count:
                self.index = selected
                return selected
        return None
