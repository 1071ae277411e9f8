"""
Error types for the face identity core.

Hard failures derive from FaceIdError. A capture that simply matches nobody
is not an error: it comes back as a MatchResult with matched=False.
"""


class FaceIdError(Exception):
    """Base class for all face identity failures."""


class ImageDecodeError(FaceIdError):
    """The captured payload could not be decoded into a bitmap."""


class NoFaceDetected(FaceIdError):
    """A detection backend found no face in the capture."""


class DimensionMismatch(FaceIdError):
    """Two descriptors cannot be compared (different lengths or versions)."""


class VersionMismatch(DimensionMismatch):
    """Descriptors were produced by different algorithm versions."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Descriptor version mismatch: expected {expected}, got {actual}"
        )


class NotReady(FaceIdError):
    """A required capability has not been initialized yet."""


class BackendUnavailable(NotReady):
    """A third-party detection backend is not installed or failed to load."""


class InvalidTransition(FaceIdError):
    """An attempt policy operation was called in the wrong state."""
