"""
Block Local-Pattern Histogram descriptor (occlusion-aware).

Every interior pixel is encoded by comparing its eight neighbours against it,
the 8-bit code is folded into one of 59 "uniform pattern" bins, and the
bins are counted separately for each block of an R x C partition of the
grid. Keeping the blocks apart is what lets the matcher throw away the few
blocks covered by a hand, phone or glasses.

Descriptor layout: block histograms concatenated in row-major block order,
each of NUM_BINS floats summing to 1.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from faceid.descriptors.interfaces import DescriptorAlgorithm

logger = logging.getLogger(__name__)

NUM_UNIFORM_PATTERNS = 58
NON_UNIFORM_BIN = NUM_UNIFORM_PATTERNS
NUM_BINS = NUM_UNIFORM_PATTERNS + 1

# (dy, dx) of neighbour i, clockwise from the top-left corner
NEIGHBOR_OFFSETS: Tuple[Tuple[int, int], ...] = (
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, 1),
    (1, 1),
    (1, 0),
    (1, -1),
    (0, -1),
)


def count_transitions(code: int) -> int:
    """Number of cyclic 0/1 transitions across the 8 bits of a code."""
    transitions = 0
    for i in range(8):
        if ((code >> i) & 1) != ((code >> ((i + 1) % 8)) & 1):
            transitions += 1
    return transitions


def build_uniform_table() -> np.ndarray:
    """
    Map every 8-bit code to its uniform pattern index.

    Codes with at most two cyclic transitions get sequential indices
    0..57 in code order; every other code lands in the catch-all bin 58.
    """
    table = np.full(256, NON_UNIFORM_BIN, dtype=np.intp)
    next_index = 0
    for code in range(256):
        if count_transitions(code) <= 2:
            table[code] = next_index
            next_index += 1
    assert next_index == NUM_UNIFORM_PATTERNS, f"expected 58 uniform codes, found {next_index}"
    table.flags.writeable = False
    return table


UNIFORM_TABLE = build_uniform_table()


def local_pattern_codes(grid: np.ndarray) -> np.ndarray:
    """
    Compute 8-neighbour codes for every pixel that has a full neighbourhood.

    Bit i of a code is set when neighbour i is >= the center pixel.

    Args:
        grid: (H, W) intensity grid.

    Returns:
        (H - 2, W - 2) int array; entry [y, x] is the code of pixel (y + 1, x + 1).
    """
    g = grid.astype(np.int16)
    h, w = g.shape
    center = g[1:h - 1, 1:w - 1]
    codes = np.zeros(center.shape, dtype=np.int32)
    for bit, (dy, dx) in enumerate(NEIGHBOR_OFFSETS):
        neighbor = g[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
        codes |= (neighbor >= center).astype(np.int32) << bit
    return codes


class BlockPatternHistogram(DescriptorAlgorithm):
    """
    Concatenated per-block uniform local-pattern histograms.

    Args:
        config: Dictionary with optional keys:
            - grid_size: Side length of the normalized grid (default 64)
            - block_grid: [rows, cols] block partition (default [4, 4])
    """

    name = "block_pattern"
    version = "1"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.grid_size = int(config.get("grid_size", 64))
        block_grid: Sequence[int] = config.get("block_grid", (4, 4))
        if len(block_grid) != 2:
            raise ValueError(f"block_grid must be [rows, cols], got {block_grid!r}")
        self.block_rows, self.block_cols = int(block_grid[0]), int(block_grid[1])

        if self.block_rows < 1 or self.block_cols < 1:
            raise ValueError(f"block_grid must be positive, got {block_grid!r}")
        if self.grid_size % self.block_rows or self.grid_size % self.block_cols:
            raise ValueError(
                f"grid_size {self.grid_size} is not divisible by block grid "
                f"{self.block_rows}x{self.block_cols}"
            )

        self.block_height = self.grid_size // self.block_rows
        self.block_width = self.grid_size // self.block_cols
        if self.block_height < 3 or self.block_width < 3:
            raise ValueError(
                f"Blocks of {self.block_height}x{self.block_width} px have no interior pixels"
            )

    @property
    def n_blocks(self) -> int:
        return self.block_rows * self.block_cols

    @property
    def length(self) -> int:
        return self.n_blocks * NUM_BINS

    @property
    def interior_pixels(self) -> int:
        """Pixels counted per block (the block minus its 1-pixel border)."""
        return (self.block_height - 2) * (self.block_width - 2)

    def extract_values(self, grid: np.ndarray) -> np.ndarray:
        n = self.grid_size
        patterns = np.full((n, n), NON_UNIFORM_BIN, dtype=np.intp)
        patterns[1:n - 1, 1:n - 1] = UNIFORM_TABLE[local_pattern_codes(grid)]

        bh, bw = self.block_height, self.block_width
        count = float(self.interior_pixels)
        histograms = []
        for r in range(self.block_rows):
            for c in range(self.block_cols):
                y0, x0 = r * bh, c * bw
                interior = patterns[y0 + 1:y0 + bh - 1, x0 + 1:x0 + bw - 1]
                hist = np.bincount(interior.ravel(), minlength=NUM_BINS)
                histograms.append(hist / count)

        return np.concatenate(histograms).astype(np.float32)

    def create_metric(self, config: Dict[str, Any]):
        from faceid.matching.metrics import ChiSquareBlockMetric

        return ChiSquareBlockMetric(
            n_blocks=self.n_blocks,
            discard_fraction=float(config.get("discard_fraction", 0.31)),
        )
