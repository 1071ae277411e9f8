"""
Face Detection Backend Module

Optional capability that locates the face in a capture before it reaches the
preprocessor. The fixed-template descriptor strategies work without it; a
deployment that wants a real detector enables it in config.yaml.

The capability is an explicit handle: it is initialized once (model
download, landmarker creation) and then passed into the pipeline. Using it
before initialization raises NotReady; a missing third-party package raises
BackendUnavailable.

Note: MediaPipe 0.10.x uses the Tasks API (mp.tasks.vision.FaceLandmarker)
instead of the legacy Solutions API (mp.solutions.face_mesh).

Usage:
    from faceid.providers import get_detection_backend

    backend = get_detection_backend(config=get_section("detection"))
    face = backend.crop_face(frame)
"""

import logging
import threading
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

from faceid.errors import BackendUnavailable, NoFaceDetected, NotReady

logger = logging.getLogger(__name__)

# Backend availability flag
_MEDIAPIPE_AVAILABLE = False

try:
    import mediapipe as mp
    from mediapipe.tasks import python as mp_tasks
    from mediapipe.tasks.python import vision
    _MEDIAPIPE_AVAILABLE = True
except ImportError:
    pass

# URL for the face landmarker model
MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task"
MODEL_FILENAME = "face_landmarker.task"


@dataclass
class FaceRegion:
    """
    A located face.

    Attributes:
        bbox: Bounding box (x1, y1, x2, y2) in pixels.
        confidence: Detection confidence (0.0 to 1.0).
        landmarks: Optional (K, 2) landmark pixel coordinates.
    """

    bbox: Tuple[int, int, int, int]
    confidence: float
    landmarks: Optional[np.ndarray] = None


def crop_region(image: np.ndarray, bbox: Tuple[int, int, int, int],
                padding: float = 0.3) -> np.ndarray:
    """
    Crop a bounding box with proportional padding, clamped to the image.

    Args:
        image: Source image.
        bbox: (x1, y1, x2, y2) in pixels.
        padding: Ratio of the box size added on each side (0.3 = 30%).

    Returns:
        Cropped view of the image.
    """
    h, w = image.shape[:2]
    x1, y1, x2, y2 = bbox

    pad_x = int((x2 - x1) * padding)
    pad_y = int((y2 - y1) * padding)

    crop_x1 = max(0, x1 - pad_x)
    crop_y1 = max(0, y1 - pad_y)
    crop_x2 = min(w, x2 + pad_x)
    crop_y2 = min(h, y2 + pad_y)

    return image[crop_y1:crop_y2, crop_x1:crop_x2]


class FaceDetectionProvider(ABC):
    """Abstract base class for third-party face detectors."""

    name: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        """True when the backing package can be imported."""

    @abstractmethod
    def load(self):
        """Load models. Called once by DetectionBackend.initialize()."""

    @abstractmethod
    def detect(self, image: np.ndarray) -> Optional[FaceRegion]:
        """Locate the most prominent face, or return None."""

    def close(self):
        """Release model resources."""


def get_model_path() -> str:
    """
    Get the path to the MediaPipe face landmarker model file.
    Downloads the model if it doesn't exist locally.

    Returns:
        Path to the model file.
    """
    from faceid.config import get_project_root

    model_dir = get_project_root() / "storage" / "models"
    model_dir.mkdir(parents=True, exist_ok=True)

    model_path = model_dir / MODEL_FILENAME

    if not model_path.exists():
        logger.info(f"Downloading MediaPipe face landmarker model from {MODEL_URL}")
        urllib.request.urlretrieve(MODEL_URL, str(model_path))
        logger.info(f"Model saved to {model_path}")

    return str(model_path)


class MediaPipeFaceProvider(FaceDetectionProvider):
    """
    Face localization using MediaPipe Face Landmarker.

    The bounding box is the extent of the 478 landmarks, clamped to the image.

    Args:
        config: The "detection" configuration section:
            - min_detection_confidence: Minimum confidence for detection (0-1)
            - color_order: Channel order of incoming frames ("bgr" default)
            - model_path: Optional local .task file, skips the download
    """

    name = "mediapipe"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.min_detection_confidence = float(config.get("min_detection_confidence", 0.5))
        self.color_order = str(config.get("color_order", "bgr")).lower()
        self.model_path = config.get("model_path")
        self.landmarker = None

    def is_available(self) -> bool:
        return _MEDIAPIPE_AVAILABLE

    def load(self):
        if not _MEDIAPIPE_AVAILABLE:
            raise BackendUnavailable(
                "mediapipe is not installed. Install with: pip install mediapipe"
            )

        model_path = self.model_path or get_model_path()
        base_options = mp_tasks.BaseOptions(model_asset_path=model_path)

        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_faces=1,
            min_face_detection_confidence=self.min_detection_confidence,
            min_face_presence_confidence=self.min_detection_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )

        self.landmarker = vision.FaceLandmarker.create_from_options(options)
        logger.info("MediaPipe face landmarker loaded")

    def _to_rgb(self, image: np.ndarray) -> np.ndarray:
        image = np.ascontiguousarray(image, dtype=np.uint8)
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
        if image.shape[2] == 4:
            image = np.ascontiguousarray(image[:, :, :3])
        if self.color_order == "bgr":
            return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        return image

    def detect(self, image: np.ndarray) -> Optional[FaceRegion]:
        if self.landmarker is None:
            raise NotReady("MediaPipe landmarker has not been loaded")

        h, w = image.shape[:2]
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=self._to_rgb(image))
        results = self.landmarker.detect(mp_image)

        if not results.face_landmarks:
            return None

        points = np.array(
            [[lm.x * w, lm.y * h] for lm in results.face_landmarks[0]],
            dtype=np.float32,
        )

        x1 = max(0, int(np.min(points[:, 0])))
        y1 = max(0, int(np.min(points[:, 1])))
        x2 = min(w, int(np.max(points[:, 0])))
        y2 = min(h, int(np.max(points[:, 1])))

        # Landmarks touching the border usually mean a partly visible face
        margin = 5
        in_bounds = (
            np.all(points[:, 0] >= margin) and np.all(points[:, 0] <= w - margin)
            and np.all(points[:, 1] >= margin) and np.all(points[:, 1] <= h - margin)
        )

        return FaceRegion(
            bbox=(x1, y1, x2, y2),
            confidence=0.95 if in_bounds else 0.7,
            landmarks=points,
        )

    def close(self):
        if self.landmarker is not None:
            self.landmarker.close()
            self.landmarker = None


class DetectionBackend:
    """
    Once-initialized handle around a FaceDetectionProvider.

    Args:
        provider: The detector to wrap.
        config: The "detection" configuration section (face_padding).
    """

    def __init__(self, provider: FaceDetectionProvider, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.provider = provider
        self.face_padding = float(config.get("face_padding", 0.3))
        self._ready = False
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._ready

    def initialize(self) -> "DetectionBackend":
        """
        Load the provider. Safe to call repeatedly; loads only once.

        Raises:
            BackendUnavailable: If the provider's package is missing.
        """
        with self._lock:
            if self._ready:
                return self
            if not self.provider.is_available():
                raise BackendUnavailable(
                    f"Face detection provider '{self.provider.name}' is not available"
                )
            self.provider.load()
            self._ready = True

        logger.info(f"Detection backend ready: {self.provider.name}")
        return self

    def detect(self, image: np.ndarray) -> Optional[FaceRegion]:
        if not self._ready:
            raise NotReady("Detection backend used before initialize()")
        return self.provider.detect(image)

    def crop_face(self, image: np.ndarray) -> np.ndarray:
        """
        Crop the detected face with padding.

        Raises:
            NotReady: Before initialize().
            NoFaceDetected: If the provider finds no face.
        """
        region = self.detect(image)
        if region is None:
            raise NoFaceDetected("No face detected in capture")
        return crop_region(image, region.bbox, self.face_padding)

    def close(self):
        with self._lock:
            self.provider.close()
            self._ready = False


# Process-wide handle
_backend_instance: Optional[DetectionBackend] = None
_backend_lock = threading.Lock()


def get_detection_backend(provider: Optional[FaceDetectionProvider] = None,
                          config: Optional[Dict[str, Any]] = None) -> DetectionBackend:
    """
    Get or create the initialized detection backend.

    Args:
        provider: Provider to use on first call (default MediaPipeFaceProvider).
        config: The "detection" configuration section.

    Returns:
        An initialized DetectionBackend.

    Raises:
        BackendUnavailable: If the provider cannot be loaded.
    """
    global _backend_instance

    with _backend_lock:
        if _backend_instance is None:
            if provider is None:
                provider = MediaPipeFaceProvider(config)
            backend = DetectionBackend(provider, config)
            backend.initialize()
            _backend_instance = backend

    return _backend_instance


def reset_detection_backend():
    """Close and forget the process-wide handle."""
    global _backend_instance

    with _backend_lock:
        if _backend_instance is not None:
            _backend_instance.close()
        _backend_instance = None
