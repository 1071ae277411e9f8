"""
Matching Interfaces Module

Value types shared by the matcher, the gallery and the attempt policy, plus
the abstract metric contract every descriptor algorithm plugs into.

Usage:
    from faceid.matching.interfaces import MatchResult, EnrollmentEntry, DescriptorMetric
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from faceid.descriptors.interfaces import Descriptor


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of a verification or identification call.

    A result with matched=False is the normal "no confident match" outcome,
    not an error.

    Attributes:
        matched: True when the best candidate cleared the threshold.
        candidate_id: Student id of the accepted candidate, None otherwise.
        score: Best distance (or similarity) observed. For an empty gallery
               this is the metric's worst value (inf / -inf).
        details: Algorithm-specific diagnostics (threshold, metric, nearest id, ...).
    """

    matched: bool
    candidate_id: Optional[str]
    score: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class EnrollmentEntry:
    """
    One enrolled identity in the gallery.

    Attributes:
        student_id: Identity key owned by the storage collaborator.
        descriptor: Enrolled descriptor, or None when the student was
                    registered without a usable photo (skipped by identify).
        metadata: Free-form data carried alongside (e.g. display name).
    """

    student_id: str
    descriptor: Optional[Descriptor]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_descriptor(self) -> bool:
        return self.descriptor is not None and len(self.descriptor) > 0


class DescriptorMetric(ABC):
    """
    Abstract base class for descriptor comparison.

    Distance metrics (lower is better) accept strictly below the threshold;
    similarity metrics (higher is better) accept strictly above it.
    """

    name: str = ""
    higher_is_better: bool = False

    @abstractmethod
    def score(self, a: np.ndarray, b: np.ndarray) -> float:
        """
        Compare two equal-length descriptor vectors.

        Args:
            a: (D,) float vector.
            b: (D,) float vector.

        Returns:
            Distance or similarity as a Python float.
        """

    @property
    def worst_score(self) -> float:
        return -math.inf if self.higher_is_better else math.inf

    def is_better(self, candidate: float, incumbent: float) -> bool:
        """Strict comparison, so ties keep the incumbent."""
        if self.higher_is_better:
            return candidate > incumbent
        return candidate < incumbent

    def accepts(self, score: float, threshold: float) -> bool:
        """Boundary values are rejected."""
        if self.higher_is_better:
            return score > threshold
        return score < threshold
