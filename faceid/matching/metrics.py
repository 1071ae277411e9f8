"""
Descriptor metrics.

- ChiSquareBlockMetric: per-block chi-squared with worst-block discarding,
  for block histogram descriptors
- CosineSimilarityMetric / EuclideanMetric: holistic dense-vector metrics
"""

import logging
import math

import numpy as np

from faceid.errors import DimensionMismatch
from faceid.matching.interfaces import DescriptorMetric

logger = logging.getLogger(__name__)

DEFAULT_DISCARD_FRACTION = 0.31


class ChiSquareBlockMetric(DescriptorMetric):
    """
    Occlusion-tolerant chi-squared distance over block histograms.

    Pipeline:
      1. Split both descriptors into n_blocks equal histograms
      2. Per block: sum((h1 - h2)^2 / (h1 + h2)) / 2, skipping empty bins
      3. Sort block distances ascending
      4. Drop the worst round(discard_fraction * n_blocks) blocks
      5. Average the kept blocks

    A face partly covered by a phone, a hand or glasses produces a few badly
    matching blocks; step 4 removes them from the average.

    Args:
        n_blocks: Number of blocks per descriptor.
        discard_fraction: Fraction of worst blocks to drop (default 0.31,
                          i.e. 5 of 16). At least one block is always kept.
    """

    name = "chi_square_block"
    higher_is_better = False

    def __init__(self, n_blocks: int, discard_fraction: float = DEFAULT_DISCARD_FRACTION):
        if n_blocks < 1:
            raise ValueError(f"n_blocks must be positive, got {n_blocks}")
        if not 0.0 <= discard_fraction < 1.0:
            raise ValueError(f"discard_fraction must be in [0, 1), got {discard_fraction}")

        self.n_blocks = int(n_blocks)
        self.discard_fraction = float(discard_fraction)
        self.n_discard = min(int(math.floor(self.discard_fraction * self.n_blocks + 0.5)), self.n_blocks - 1)

    @property
    def n_kept(self) -> int:
        return self.n_blocks - self.n_discard

    def block_distances(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Unsorted per-block chi-squared distances, shape (n_blocks,)."""
        a = np.asarray(a, dtype=np.float64).ravel()
        b = np.asarray(b, dtype=np.float64).ravel()
        if a.shape != b.shape:
            raise DimensionMismatch(f"Descriptor lengths differ: {a.shape[0]} vs {b.shape[0]}")
        if a.shape[0] % self.n_blocks:
            raise DimensionMismatch(
                f"Descriptor length {a.shape[0]} does not split into {self.n_blocks} blocks"
            )

        h1 = a.reshape(self.n_blocks, -1)
        h2 = b.reshape(self.n_blocks, -1)
        numerator = (h1 - h2) ** 2
        denominator = h1 + h2
        with np.errstate(divide="ignore", invalid="ignore"):
            terms = np.where(denominator > 0, numerator / denominator, 0.0)
        return terms.sum(axis=1) / 2.0

    def score(self, a: np.ndarray, b: np.ndarray) -> float:
        per_block = np.sort(self.block_distances(a, b))
        kept = per_block[:self.n_kept]
        return float(np.mean(kept))


class CosineSimilarityMetric(DescriptorMetric):
    """
    Cosine similarity over the full vector. A zero vector scores 0.0.
    """

    name = "cosine"
    higher_is_better = True

    def score(self, a: np.ndarray, b: np.ndarray) -> float:
        a = np.asarray(a, dtype=np.float64).ravel()
        b = np.asarray(b, dtype=np.float64).ravel()
        if a.shape != b.shape:
            raise DimensionMismatch(f"Descriptor lengths differ: {a.shape[0]} vs {b.shape[0]}")

        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0

        similarity = float(np.dot(a, b) / (norm_a * norm_b))
        # Clamp to [-1, 1] for numerical stability
        return max(-1.0, min(1.0, similarity))


class EuclideanMetric(DescriptorMetric):
    """Plain L2 distance over the full vector."""

    name = "euclidean"
    higher_is_better = False

    def score(self, a: np.ndarray, b: np.ndarray) -> float:
        a = np.asarray(a, dtype=np.float64).ravel()
        b = np.asarray(b, dtype=np.float64).ravel()
        if a.shape != b.shape:
            raise DimensionMismatch(f"Descriptor lengths differ: {a.shape[0]} vs {b.shape[0]}")
        return float(np.linalg.norm(a - b))
