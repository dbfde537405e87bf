"""Grid geometry for storyboard slicing.

A storyboard is cut into ``cols x rows`` cells. Cell edges are rounded
independently so neighbouring cells share an exact pixel boundary and the
last row/column absorbs any remainder.
"""
import math
from dataclasses import dataclass
from typing import List, Optional

from .config import DEFAULT_MAX_COLS, DEFAULT_MIN_COLS


@dataclass(frozen=True)
class GridLayout:
    cols: int
    rows: int

    @property
    def capacity(self) -> int:
        return self.cols * self.rows


@dataclass(frozen=True)
class CellRect:
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self):
        """Pillow-style (left, upper, right, lower) box."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)


def clamp_int(value, fallback: int) -> int:
    """Coerce to a floored int, returning ``fallback`` for non-finite input."""
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        return fallback
    if not math.isfinite(num):
        return fallback
    return math.floor(num)


def _is_finite(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except (TypeError, OverflowError):
        return False


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def compute_layout(count, min_cols=DEFAULT_MIN_COLS, max_cols=DEFAULT_MAX_COLS) -> GridLayout:
    safe_count = max(1, clamp_int(count, 1))
    min_cols = max(1, clamp_int(min_cols, DEFAULT_MIN_COLS))
    max_cols = max(min_cols, clamp_int(max_cols, DEFAULT_MAX_COLS))
    suggested = math.ceil(math.sqrt(safe_count))
    cols = min(max_cols, max(min_cols, suggested))
    rows = max(1, math.ceil(safe_count / cols))
    return GridLayout(cols=cols, rows=rows)


def cell_bounds(index, cols, rows, width, height) -> Optional[CellRect]:
    """Return the source rect for cell ``index`` or None when it has none."""
    if not _is_finite(index) or index < 0:
        return None
    if not _is_finite(cols) or cols <= 0:
        return None
    if not _is_finite(rows) or rows <= 0:
        return None
    if not _is_finite(width) or width <= 0:
        return None
    if not _is_finite(height) or height <= 0:
        return None

    col = math.floor(index % cols)
    row = math.floor(index / cols)
    if row >= rows:
        return None

    x0 = min(width, max(0, _round_half_up(col * width / cols)))
    x1 = min(width, max(0, _round_half_up((col + 1) * width / cols)))
    y0 = min(height, max(0, _round_half_up(row * height / rows)))
    y1 = min(height, max(0, _round_half_up((row + 1) * height / rows)))

    cell_w = max(1, x1 - x0)
    cell_h = max(1, y1 - y0)
    # a 1px floor on a zero-width trailing cell must not push it off the image
    return CellRect(
        x=int(max(0, min(x0, width - cell_w))),
        y=int(max(0, min(y0, height - cell_h))),
        width=int(cell_w),
        height=int(cell_h),
    )


def cell_rects(layout: GridLayout, width, height, count) -> List[CellRect]:
    rects = []
    for index in range(max(1, clamp_int(count, 1))):
        rect = cell_bounds(index, layout.cols, layout.rows, width, height)
        if rect is not None:
            rects.append(rect)
    return rects
