from __future__ import annotations

from dataclasses import dataclass

from domain.models import Point, TerminalRole
from domain.ports.layout import LayoutPolicy


@dataclass(frozen=True)
class LayoutConfig:
    center_x: float = 300.0
    start_y: float = 40.0
    gap_y: float = 120.0
    terminal_gap_x: float = 240.0


class VerticalStackLayout(LayoutPolicy):
    """Stacks the elements of a level in one column, top to bottom.

    Start and end markers sit on the first row, left and right of the column.
    """

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def fallback_position(self, order: int) -> Point:
        return self._row(order)

    def placement_position(self, placed_count: int) -> Point:
        return self._row(placed_count)

    def terminal_position(self, role: TerminalRole) -> Point:
        offset = self.config.terminal_gap_x
        if role is TerminalRole.START:
            offset = -offset
        return Point(self.config.center_x + offset, self.config.start_y)

    def _row(self, index: int) -> Point:
        return Point(self.config.center_x, self.config.start_y + index * self.config.gap_y)
