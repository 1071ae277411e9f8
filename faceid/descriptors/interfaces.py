"""
Descriptor Interfaces Module

Defines the descriptor value type and the pluggable algorithm contract.

A descriptor is a fixed-length float vector tagged with the algorithm name
and version that produced it. The tag travels with the vector into storage
so that descriptors from different algorithm versions are never compared.

Concrete strategies:
    - block_pattern: block local-pattern histograms (occlusion-aware)
    - geometric_texture: landmark ratios + periocular texture energy

Usage:
    from faceid.descriptors import DescriptorExtractor, create_algorithm

    extractor = DescriptorExtractor(create_algorithm(config["descriptor"]))
    descriptor = extractor.extract(grid)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Descriptor:
    """
    Fixed-length face signature.

    Attributes:
        values: 1-D float32 vector. Length is constant per algorithm version.
        algorithm: Name of the producing algorithm (e.g. "block_pattern").
        version: Version string of the producing algorithm.
    """

    values: np.ndarray
    algorithm: str
    version: str

    def __post_init__(self):
        values = np.asarray(self.values, dtype=np.float32)
        assert values.ndim == 1, f"descriptor values must be 1-D, got shape {values.shape}"
        # Descriptors are shared between gallery snapshots; keep them immutable
        values = values.copy()
        values.flags.writeable = False
        self.values = values

    @property
    def tag(self) -> str:
        """Algorithm identifier and version, e.g. "block_pattern/1"."""
        return f"{self.algorithm}/{self.version}"

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the storage collaborator (JSON-friendly)."""
        return {
            "algorithm": self.algorithm,
            "version": self.version,
            "values": self.values.astype(float).tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Descriptor":
        """Rebuild a descriptor persisted with to_dict()."""
        return cls(
            values=np.asarray(data["values"], dtype=np.float32),
            algorithm=str(data["algorithm"]),
            version=str(data["version"]),
        )


class DescriptorAlgorithm(ABC):
    """
    Abstract base class for descriptor extraction strategies.

    Each strategy is a deterministic pure function of the normalized grid and
    declares the metric its descriptors are comparable under. The strategy is
    picked once from configuration and never mixed at runtime.
    """

    name: str = ""
    version: str = "1"

    @property
    @abstractmethod
    def length(self) -> int:
        """Number of floats in every descriptor this strategy produces."""

    @abstractmethod
    def extract_values(self, grid: np.ndarray) -> np.ndarray:
        """
        Compute the raw descriptor vector.

        Args:
            grid: (N, N) uint8 equalized grid from the preprocessor.

        Returns:
            (length,) float32 vector.
        """

    @abstractmethod
    def create_metric(self, config: Dict[str, Any]):
        """
        Build the DescriptorMetric these descriptors are compared with.

        Args:
            config: The "matching" configuration section.
        """

    @property
    def tag(self) -> str:
        return f"{self.name}/{self.version}"


class DescriptorExtractor:
    """
    Turns normalized grids into tagged descriptors using one algorithm.

    Attributes:
        algorithm: The configured DescriptorAlgorithm strategy.
        grid_size: Expected side length of incoming grids.
    """

    def __init__(self, algorithm: DescriptorAlgorithm, grid_size: int = 64):
        self.algorithm = algorithm
        self.grid_size = int(grid_size)

    @property
    def tag(self) -> str:
        return self.algorithm.tag

    def extract(self, grid: np.ndarray) -> Descriptor:
        """
        Extract a descriptor from one normalized grid.

        Args:
            grid: (grid_size, grid_size) uint8 grid.

        Returns:
            Descriptor tagged with the algorithm name and version.

        Raises:
            ValueError: If the grid has the wrong shape.
        """
        grid = np.asarray(grid)
        expected = (self.grid_size, self.grid_size)
        if grid.shape != expected:
            raise ValueError(f"Expected a {expected} grid, got {grid.shape}")

        values = np.asarray(self.algorithm.extract_values(grid), dtype=np.float32)
        if values.shape != (self.algorithm.length,):
            raise ValueError(
                f"{self.algorithm.name} produced {values.shape[0]} values, "
                f"expected {self.algorithm.length}"
            )

        return Descriptor(
            values=values,
            algorithm=self.algorithm.name,
            version=self.algorithm.version,
        )

    def extract_many(self, grids: List[np.ndarray]) -> List[Descriptor]:
        """Extract descriptors for several grids, in order."""
        return [self.extract(grid) for grid in grids]
