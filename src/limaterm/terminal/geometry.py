"""Pixel-to-cell geometry fitting for terminal views.

All arithmetic happens in device-pixel space. The glyph rasterizer snaps cell
heights to whole device pixels, so the fitter has to do the same or the grid
ends up one row taller or shorter than what is actually drawn.
"""

from __future__ import annotations

import logging as py_logging
import math
from collections import OrderedDict
from dataclasses import dataclass

from limaterm.errors import GeometryUnavailable
from limaterm.terminal.models import MINIMUM_COLS, MINIMUM_ROWS, Geometry

logger = py_logging.getLogger(__name__)

DEFAULT_SCROLLBAR_WIDTH = 10.0
# Absorbs float noise when the available space is an exact multiple of the cell.
_FLOOR_EPSILON = 1e-6
_CACHE_SIZE = 128


@dataclass(frozen=True)
class Padding:
    left: float = 0.0
    right: float = 0.0
    top: float = 0.0
    bottom: float = 0.0

    @property
    def horizontal(self) -> float:
        return self.left + self.right

    @property
    def vertical(self) -> float:
        return self.top + self.bottom


@dataclass(frozen=True)
class CellMetrics:
    """Monospace glyph metrics in CSS (logical) pixels."""

    char_width: float
    char_height: float
    line_height: float = 1.0
    letter_spacing: float = 0.0

    @classmethod
    def estimate(
        cls,
        font_size: float,
        *,
        line_height: float = 1.0,
        letter_spacing: float = 0.0,
    ) -> CellMetrics:
        """Approximate metrics for a monospace font when no font engine is available."""
        return cls(
            char_width=font_size * 0.6,
            char_height=math.ceil(font_size * 1.2),
            line_height=line_height,
            letter_spacing=letter_spacing,
        )

    def scaled_cell_width(self, dpr: float) -> float:
        return self.char_width * dpr + self.letter_spacing

    def scaled_line_height(self, dpr: float) -> int:
        scaled_char_height = math.ceil(self.char_height * dpr - _FLOOR_EPSILON)
        return _floor(scaled_char_height * self.line_height)


def _floor(value: float) -> int:
    return math.floor(value + _FLOOR_EPSILON)


def _finite(*values: float) -> bool:
    return all(isinstance(value, (int, float)) and math.isfinite(value) for value in values)


def compute_geometry(
    width_px: float,
    height_px: float,
    *,
    cell: CellMetrics,
    dpr: float = 1.0,
    padding: Padding = Padding(),
    scrollbar_width: float = DEFAULT_SCROLLBAR_WIDTH,
    minimum_cols: int = MINIMUM_COLS,
    minimum_rows: int = MINIMUM_ROWS,
) -> Geometry:
    """Return the grid that fits a container of the given CSS pixel size.

    Raises GeometryUnavailable when the container has no usable area (hidden
    tab, collapsed splitter) or the inputs are not finite numbers.
    """
    if not _finite(width_px, height_px, dpr, cell.char_width, cell.char_height):
        raise GeometryUnavailable(f"Non-finite geometry input: {width_px}x{height_px} dpr={dpr}")
    if dpr <= 0:
        raise GeometryUnavailable(f"Invalid device pixel ratio: {dpr}")

    available_width = width_px - padding.horizontal - scrollbar_width
    available_height = height_px - padding.vertical
    if available_width <= 0 or available_height <= 0:
        raise GeometryUnavailable(
            f"No space available: {available_width:g}x{available_height:g}",
            hint="Container is hidden or collapsed; retry on the next resize.",
        )

    scaled_cell_width = cell.scaled_cell_width(dpr)
    scaled_line_height = cell.scaled_line_height(dpr)
    if scaled_cell_width <= 0 or scaled_line_height <= 0:
        raise GeometryUnavailable(f"Degenerate cell metrics: {cell}")

    cols = max(minimum_cols, _floor(available_width * dpr / scaled_cell_width))
    rows = max(minimum_rows, _floor(available_height * dpr / scaled_line_height))
    return Geometry(
        cols=cols,
        rows=rows,
        cell_width_px=scaled_cell_width / dpr,
        cell_height_px=scaled_line_height / dpr,
    )


class GeometryFitter:
    """Cached wrapper around compute_geometry for one terminal view."""

    def __init__(
        self,
        cell: CellMetrics,
        *,
        dpr: float = 1.0,
        padding: Padding = Padding(),
        scrollbar_width: float = DEFAULT_SCROLLBAR_WIDTH,
        minimum_cols: int = MINIMUM_COLS,
        minimum_rows: int = MINIMUM_ROWS,
    ) -> None:
        self.cell = cell
        self.dpr = dpr
        self.padding = padding
        self.scrollbar_width = scrollbar_width
        self.minimum_cols = minimum_cols
        self.minimum_rows = minimum_rows
        self._cache: OrderedDict[tuple[float, float, float], Geometry | None] = OrderedDict()

    def update_metrics(
        self,
        *,
        cell: CellMetrics | None = None,
        dpr: float | None = None,
        padding: Padding | None = None,
    ) -> None:
        if cell is not None:
            self.cell = cell
        if dpr is not None:
            self.dpr = dpr
        if padding is not None:
            self.padding = padding
        self._cache.clear()

    def fit(self, width_px: float, height_px: float, *, dpr: float | None = None) -> Geometry | None:
        """Return the fitted geometry, or None when no fit is available."""
        ratio = self.dpr if dpr is None else dpr
        key = (width_px, height_px, ratio)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        try:
            geometry: Geometry | None = compute_geometry(
                width_px,
                height_px,
                cell=self.cell,
                dpr=ratio,
                padding=self.padding,
                scrollbar_width=self.scrollbar_width,
                minimum_cols=self.minimum_cols,
                minimum_rows=self.minimum_rows,
            )
        except GeometryUnavailable as exc:
            logger.debug("geometry-fit unavailable size=%sx%s reason=%s", width_px, height_px, exc.message)
            geometry = None

        self._cache[key] = geometry
        if len(self._cache) > _CACHE_SIZE:
            self._cache.popitem(last=False)
        return geometry

    def cache_size(self) -> int:
        return len(self._cache)
