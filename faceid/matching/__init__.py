"""
Descriptor matching: metrics, the enrolled gallery and the 1:1 / 1:N matcher.
"""

from faceid.matching.interfaces import DescriptorMetric, EnrollmentEntry, MatchResult
from faceid.matching.metrics import ChiSquareBlockMetric, CosineSimilarityMetric, EuclideanMetric
from faceid.matching.gallery import Gallery, GalleryMatcher

__all__ = [
    "DescriptorMetric",
    "EnrollmentEntry",
    "MatchResult",
    "ChiSquareBlockMetric",
    "CosineSimilarityMetric",
    "EuclideanMetric",
    "Gallery",
    "GalleryMatcher",
]
