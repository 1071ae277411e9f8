"""
Face Identity Pipeline

Wires the core together: optional face crop -> preprocess -> extract ->
match, and drives kiosk attempts through the AttemptPolicy.

Usage:
    from faceid.config import get_config
    from faceid.pipeline import build_pipeline

    pipeline = build_pipeline(get_config())
    pipeline.enroll("S-001", enrollment_photo)
    result = pipeline.identify(capture)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from faceid.attempts import AttemptPolicy, ScanState
from faceid.descriptors import Descriptor, DescriptorExtractor, create_algorithm
from faceid.errors import FaceIdError
from faceid.matching import Gallery, GalleryMatcher, MatchResult
from faceid.preprocessing import ImagePreprocessor
from faceid.providers import DetectionBackend

logger = logging.getLogger(__name__)


@dataclass
class ScanOutcome:
    """
    Result of one kiosk attempt.

    Attributes:
        state: Policy state after the attempt.
        result: Match result, None when the capture itself failed.
        error: Failure message for a capture that could not be described.
        attempts_made: Failed attempts so far in this transaction.
        remaining: Attempts left before fallback.
        fallback_required: True once attempts are exhausted.
    """

    state: ScanState
    result: Optional[MatchResult]
    error: Optional[str]
    attempts_made: int
    remaining: int
    fallback_required: bool

    @classmethod
    def from_policy(cls, policy: AttemptPolicy, result: Optional[MatchResult] = None,
                    error: Optional[str] = None) -> "ScanOutcome":
        return cls(
            state=policy.state,
            result=result,
            error=error,
            attempts_made=policy.attempts_made,
            remaining=policy.remaining,
            fallback_required=policy.fallback_required,
        )


class FaceIdentityPipeline:
    """
    End-to-end enrollment, verification and identification.

    Args:
        preprocessor: ImagePreprocessor producing the normalized grid.
        extractor: DescriptorExtractor for the configured algorithm.
        matcher: GalleryMatcher using the algorithm's metric.
        gallery: Enrolled roster.
        verify_threshold: Threshold for 1:1 verification.
        identify_threshold: Threshold for 1:N identification.
        detection_backend: Optional initialized DetectionBackend. When given,
                           captures are cropped to the detected face first.
    """

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        extractor: DescriptorExtractor,
        matcher: GalleryMatcher,
        gallery: Gallery,
        verify_threshold: float,
        identify_threshold: float,
        detection_backend: Optional[DetectionBackend] = None,
    ):
        self.preprocessor = preprocessor
        self.extractor = extractor
        self.matcher = matcher
        self.gallery = gallery
        self.verify_threshold = float(verify_threshold)
        self.identify_threshold = float(identify_threshold)
        self.detection_backend = detection_backend

    @property
    def tag(self) -> str:
        return self.extractor.tag

    def describe(self, image: np.ndarray) -> Descriptor:
        """
        Compute the descriptor for one capture.

        Raises:
            NotReady: If a detection backend is attached but not initialized.
            NoFaceDetected: If the detection backend finds no face.
        """
        if self.detection_backend is not None:
            image = self.detection_backend.crop_face(image)

        grid = self.preprocessor.preprocess(image)
        return self.extractor.extract(grid)

    def enroll(self, student_id: str, image: np.ndarray,
               metadata: Optional[Dict[str, Any]] = None) -> Descriptor:
        """
        Describe an enrollment photo and put it in the gallery.

        Returns:
            The descriptor, for the storage collaborator to persist.
        """
        descriptor = self.describe(image)
        self.gallery.enroll(student_id, descriptor, metadata)
        logger.info(f"Enrolled {student_id} with {descriptor.tag}")
        return descriptor

    def verify(self, student_id: str, image: np.ndarray) -> MatchResult:
        """1:1 check of a capture against one enrolled student."""
        descriptor = self.describe(image)
        return self.verify_descriptor(student_id, descriptor)

    def verify_descriptor(self, student_id: str, descriptor: Descriptor) -> MatchResult:
        details: Dict[str, Any] = {
            "metric": self.matcher.metric.name,
            "threshold": self.verify_threshold,
        }

        entry = self.gallery.get(student_id)
        if entry is None or not entry.has_descriptor:
            details["reason"] = "not_enrolled"
            return MatchResult(matched=False, candidate_id=None,
                               score=self.matcher.metric.worst_score, details=details)

        score = self.matcher.distance(descriptor, entry.descriptor)
        matched = self.matcher.accepts(score, self.verify_threshold)
        logger.info(f"Verify {student_id}: score={score:.4f} matched={matched}")

        return MatchResult(
            matched=matched,
            candidate_id=student_id if matched else None,
            score=score,
            details=details,
        )

    def identify(self, image: np.ndarray) -> MatchResult:
        """1:N search of a capture over the current gallery snapshot."""
        return self.identify_descriptor(self.describe(image))

    def identify_descriptor(self, descriptor: Descriptor) -> MatchResult:
        return self.matcher.identify(descriptor, self.gallery.snapshot(), self.identify_threshold)

    def scan(self, image: np.ndarray, policy: AttemptPolicy) -> ScanOutcome:
        """
        Run one kiosk attempt.

        A capture that cannot be described (no face, backend failure) is
        recorded as a failed attempt instead of propagating.

        Raises:
            InvalidTransition: If the policy cannot start a capture
                               (e.g. attempts already exhausted).
        """
        policy.begin_capture()

        try:
            descriptor = self.describe(image)
        except FaceIdError as e:
            logger.warning(f"Capture failed: {e}")
            policy.record_failure(e)
            return ScanOutcome.from_policy(policy, error=str(e))

        policy.begin_matching()
        result = self.identify_descriptor(descriptor)
        policy.record_result(result)
        return ScanOutcome.from_policy(policy, result=result)

    def fail_capture(self, policy: AttemptPolicy, error: FaceIdError) -> ScanOutcome:
        """Record an attempt whose capture never produced an image."""
        policy.begin_capture()
        policy.record_failure(error)
        return ScanOutcome.from_policy(policy, error=str(error))


def resolve_thresholds(matching_config: Dict[str, Any], algorithm_name: str) -> Dict[str, float]:
    """
    Pick verify/identify thresholds, letting a per-algorithm subsection
    override the top-level values.
    """
    overrides = matching_config.get(algorithm_name) or {}
    verify = overrides.get("verify_threshold", matching_config.get("verify_threshold", 0.20))
    identify = overrides.get(
        "identify_threshold", matching_config.get("identify_threshold", verify)
    )
    return {"verify_threshold": float(verify), "identify_threshold": float(identify)}


def build_pipeline(
    config: Dict[str, Any],
    gallery: Optional[Gallery] = None,
    detection_backend: Optional[DetectionBackend] = None,
) -> FaceIdentityPipeline:
    """
    Build the pipeline from a full configuration dictionary.

    Args:
        config: Parsed config.yaml (sections preprocessing, descriptor, matching).
        gallery: Existing gallery; a new empty one is created if None.
        detection_backend: Optional initialized detection backend.

    Returns:
        A ready FaceIdentityPipeline.

    Raises:
        ValueError: On inconsistent configuration.
    """
    preprocessing_config = dict(config.get("preprocessing") or {})
    descriptor_config = dict(config.get("descriptor") or {})
    matching_config = dict(config.get("matching") or {})

    preprocessor = ImagePreprocessor(preprocessing_config)
    descriptor_config.setdefault("grid_size", preprocessor.grid_size)
    if int(descriptor_config["grid_size"]) != preprocessor.grid_size:
        raise ValueError(
            f"descriptor.grid_size ({descriptor_config['grid_size']}) must equal "
            f"preprocessing.grid_size ({preprocessor.grid_size})"
        )

    algorithm = create_algorithm(descriptor_config)
    extractor = DescriptorExtractor(algorithm, grid_size=preprocessor.grid_size)
    matcher = GalleryMatcher(algorithm.create_metric(matching_config), expected_tag=algorithm.tag)

    if gallery is None:
        gallery = Gallery(expected_tag=algorithm.tag)

    thresholds = resolve_thresholds(matching_config, algorithm.name)

    return FaceIdentityPipeline(
        preprocessor=preprocessor,
        extractor=extractor,
        matcher=matcher,
        gallery=gallery,
        verify_threshold=thresholds["verify_threshold"],
        identify_threshold=thresholds["identify_threshold"],
        detection_backend=detection_backend,
    )
