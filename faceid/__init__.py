"""
Gate-pass face identity core.

Capture -> ImagePreprocessor -> DescriptorExtractor -> GalleryMatcher ->
AttemptPolicy, plus the storage, detection-backend and evaluation helpers
around it.
"""

from faceid.attempts import AttemptPolicy, OutingType, ScanAttemptState, ScanState
from faceid.descriptors import Descriptor, DescriptorExtractor, create_algorithm
from faceid.errors import (
    BackendUnavailable,
    DimensionMismatch,
    FaceIdError,
    ImageDecodeError,
    InvalidTransition,
    NoFaceDetected,
    NotReady,
    VersionMismatch,
)
from faceid.matching import EnrollmentEntry, Gallery, GalleryMatcher, MatchResult
from faceid.pipeline import FaceIdentityPipeline, ScanOutcome, build_pipeline
from faceid.preprocessing import ImagePreprocessor

__version__ = "0.1.0"

__all__ = [
    "AttemptPolicy",
    "OutingType",
    "ScanAttemptState",
    "ScanState",
    "Descriptor",
    "DescriptorExtractor",
    "create_algorithm",
    "BackendUnavailable",
    "DimensionMismatch",
    "FaceIdError",
    "ImageDecodeError",
    "InvalidTransition",
    "NoFaceDetected",
    "NotReady",
    "VersionMismatch",
    "EnrollmentEntry",
    "Gallery",
    "GalleryMatcher",
    "MatchResult",
    "FaceIdentityPipeline",
    "ScanOutcome",
    "build_pipeline",
    "ImagePreprocessor",
]
