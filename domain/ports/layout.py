from __future__ import annotations

from typing import Protocol

from domain.models import Point, TerminalRole


class LayoutPolicy(Protocol):
    def fallback_position(self, order: int) -> Point:
        ...

    def placement_position(self, placed_count: int) -> Point:
        ...

    def terminal_position(self, role: TerminalRole) -> Point:
        ...
