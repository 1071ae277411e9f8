"""
Gallery and matcher.

The Gallery holds the enrolled identities as an immutable tuple that is
swapped on every write, so identify() can run over a snapshot while
enrollments happen concurrently. The GalleryMatcher compares descriptors
under one metric and runs 1:1 verification and 1:N identification.

Usage:
    gallery = Gallery(expected_tag="block_pattern/1")
    gallery.enroll("S-001", descriptor)

    matcher = GalleryMatcher(metric, expected_tag="block_pattern/1")
    result = matcher.identify(captured, gallery.snapshot(), threshold=0.2)
"""

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from faceid.descriptors.interfaces import Descriptor
from faceid.errors import DimensionMismatch, VersionMismatch
from faceid.matching.interfaces import DescriptorMetric, EnrollmentEntry, MatchResult

logger = logging.getLogger(__name__)


class Gallery:
    """
    Copy-on-write collection of EnrollmentEntry, in enrollment order.

    Re-enrolling an existing student replaces the descriptor in place, so
    the student keeps its position for first-encountered tie-breaking.

    Args:
        entries: Optional initial entries.
        expected_tag: If set, descriptors with another algorithm tag are refused.
    """

    def __init__(self, entries: Optional[Iterable[EnrollmentEntry]] = None,
                 expected_tag: Optional[str] = None):
        self.expected_tag = expected_tag
        self._lock = threading.Lock()
        self._entries: Tuple[EnrollmentEntry, ...] = ()

        for entry in entries or ():
            self.enroll(entry.student_id, entry.descriptor, entry.metadata)

    def _check_tag(self, descriptor: Optional[Descriptor]):
        if descriptor is None or self.expected_tag is None:
            return
        if descriptor.tag != self.expected_tag:
            raise VersionMismatch(self.expected_tag, descriptor.tag)

    def enroll(self, student_id: str, descriptor: Optional[Descriptor],
               metadata: Optional[Dict[str, Any]] = None) -> EnrollmentEntry:
        """
        Add or replace a student's descriptor.

        Returns:
            The stored EnrollmentEntry.

        Raises:
            VersionMismatch: If the descriptor tag differs from expected_tag.
        """
        self._check_tag(descriptor)
        entry = EnrollmentEntry(
            student_id=str(student_id),
            descriptor=descriptor,
            metadata=dict(metadata or {}),
        )

        with self._lock:
            current = list(self._entries)
            for i, existing in enumerate(current):
                if existing.student_id == entry.student_id:
                    current[i] = entry
                    break
            else:
                current.append(entry)
            self._entries = tuple(current)

        logger.debug(f"Enrolled {entry.student_id} (gallery size {len(self._entries)})")
        return entry

    def remove(self, student_id: str) -> bool:
        """Remove a student. Returns False if it was not enrolled."""
        with self._lock:
            remaining = tuple(e for e in self._entries if e.student_id != student_id)
            removed = len(remaining) != len(self._entries)
            self._entries = remaining
        return removed

    def clear(self):
        with self._lock:
            self._entries = ()

    def get(self, student_id: str) -> Optional[EnrollmentEntry]:
        for entry in self._entries:
            if entry.student_id == student_id:
                return entry
        return None

    def snapshot(self) -> Tuple[EnrollmentEntry, ...]:
        """Current entries. The returned tuple never changes."""
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, student_id: object) -> bool:
        return self.get(student_id) is not None

    def __iter__(self) -> Iterator[EnrollmentEntry]:
        return iter(self._entries)


class GalleryMatcher:
    """
    Compares descriptors under a single metric.

    Args:
        metric: DescriptorMetric produced by the configured algorithm.
        expected_tag: Optional algorithm tag every compared descriptor must carry.
    """

    def __init__(self, metric: DescriptorMetric, expected_tag: Optional[str] = None):
        self.metric = metric
        self.expected_tag = expected_tag

    def distance(self, d1: Descriptor, d2: Descriptor) -> float:
        """
        Score two descriptors (distance or similarity, see metric.higher_is_better).

        Raises:
            VersionMismatch: If the descriptors come from different algorithm versions.
            DimensionMismatch: If their lengths differ.
        """
        if d1.tag != d2.tag:
            raise VersionMismatch(d1.tag, d2.tag)
        if self.expected_tag is not None and d1.tag != self.expected_tag:
            raise VersionMismatch(self.expected_tag, d1.tag)
        if len(d1) != len(d2):
            raise DimensionMismatch(f"Descriptor lengths differ: {len(d1)} vs {len(d2)}")

        return self.metric.score(d1.values, d2.values)

    def accepts(self, score: float, threshold: float) -> bool:
        return self.metric.accepts(score, threshold)

    def verify(self, captured: Descriptor, enrolled: Descriptor, threshold: float) -> bool:
        """1:1 check against one enrolled descriptor."""
        return self.accepts(self.distance(captured, enrolled), threshold)

    def identify(self, captured: Descriptor, gallery: Iterable[EnrollmentEntry],
                 threshold: float) -> MatchResult:
        """
        1:N search over the gallery.

        Entries without a descriptor are skipped. When several candidates
        share the best score, the first one in gallery order wins.

        Args:
            captured: Descriptor from the capture.
            gallery: Gallery or any iterable of EnrollmentEntry.
            threshold: Acceptance threshold.

        Returns:
            MatchResult. matched is False for an empty gallery or when the
            best candidate fails the threshold.
        """
        entries = gallery.snapshot() if isinstance(gallery, Gallery) else tuple(gallery)

        best_score: Optional[float] = None
        best_entry: Optional[EnrollmentEntry] = None
        compared = 0
        skipped = 0

        for entry in entries:
            if not entry.has_descriptor:
                skipped += 1
                continue
            score = self.distance(captured, entry.descriptor)
            compared += 1
            if best_score is None or self.metric.is_better(score, best_score):
                best_score = score
                best_entry = entry

        details: Dict[str, Any] = {
            "metric": self.metric.name,
            "threshold": threshold,
            "compared": compared,
            "skipped": skipped,
        }

        if best_entry is None:
            logger.info("Identification against empty gallery")
            return MatchResult(matched=False, candidate_id=None,
                               score=self.metric.worst_score, details=details)

        matched = self.accepts(best_score, threshold)
        details["nearest_id"] = best_entry.student_id
        logger.info(
            f"Best match {best_entry.student_id} score={best_score:.4f} "
            f"threshold={threshold} matched={matched}"
        )

        return MatchResult(
            matched=matched,
            candidate_id=best_entry.student_id if matched else None,
            score=best_score,
            details=details,
        )
