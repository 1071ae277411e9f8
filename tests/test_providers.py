"""
Tests for the face detection backend.

A fake provider stands in for MediaPipe so the tests run without models.

Run with: pytest tests/test_providers.py -v
"""

import os
import sys
from unittest.mock import patch

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceid.errors import BackendUnavailable, NoFaceDetected, NotReady
from faceid.providers import (
    DetectionBackend,
    FaceDetectionProvider,
    FaceRegion,
    MediaPipeFaceProvider,
    crop_region,
    get_detection_backend,
    reset_detection_backend,
)


class FakeProvider(FaceDetectionProvider):
    """Provider that counts loads and returns a configurable region."""

    name = "fake"

    def __init__(self, region=None, available=True):
        self.region = region
        self.available = available
        self.load_calls = 0
        self.closed = False

    def is_available(self):
        return self.available

    def load(self):
        self.load_calls += 1

    def detect(self, image):
        return self.region

    def close(self):
        self.closed = True


@pytest.fixture
def frame():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    frame[20:80, 50:150] = 200
    return frame


@pytest.fixture(autouse=True)
def clean_global_backend():
    reset_detection_backend()
    yield
    reset_detection_backend()


class TestCropRegion:
    """Tests for padded cropping."""

    def test_without_padding(self, frame):
        crop = crop_region(frame, (50, 20, 150, 80), padding=0.0)
        assert crop.shape == (60, 100, 3)
        assert np.all(crop == 200)

    def test_padding(self, frame):
        crop = crop_region(frame, (50, 20, 150, 80), padding=0.1)
        # 10 px horizontally, 6 px vertically on each side
        assert crop.shape == (72, 120, 3)

    def test_clamped_to_image(self, frame):
        crop = crop_region(frame, (0, 0, 200, 100), padding=0.5)
        assert crop.shape == frame.shape


class TestDetectionBackend:
    """Tests for the once-initialized handle."""

    def test_not_ready_before_initialize(self, frame):
        backend = DetectionBackend(FakeProvider(FaceRegion((50, 20, 150, 80), 0.9)))

        assert backend.ready is False
        with pytest.raises(NotReady):
            backend.detect(frame)
        with pytest.raises(NotReady):
            backend.crop_face(frame)

    def test_initialize_loads_once(self):
        provider = FakeProvider()
        backend = DetectionBackend(provider)

        assert backend.initialize() is backend
        backend.initialize()

        assert backend.ready is True
        assert provider.load_calls == 1

    def test_unavailable_provider(self):
        backend = DetectionBackend(FakeProvider(available=False))

        with pytest.raises(BackendUnavailable):
            backend.initialize()
        assert backend.ready is False

    def test_unavailable_is_not_ready(self):
        assert issubclass(BackendUnavailable, NotReady)

    def test_no_face(self, frame):
        backend = DetectionBackend(FakeProvider(region=None)).initialize()

        with pytest.raises(NoFaceDetected):
            backend.crop_face(frame)

    def test_crop_face(self, frame):
        region = FaceRegion(bbox=(50, 20, 150, 80), confidence=0.9)
        backend = DetectionBackend(FakeProvider(region), {"face_padding": 0.0}).initialize()

        crop = backend.crop_face(frame)
        assert crop.shape == (60, 100, 3)

    def test_close(self):
        provider = FakeProvider()
        backend = DetectionBackend(provider).initialize()
        backend.close()

        assert provider.closed is True
        assert backend.ready is False


class TestGlobalBackend:
    """Tests for the process-wide handle."""

    def test_same_instance(self):
        first = get_detection_backend(provider=FakeProvider())
        second = get_detection_backend(provider=FakeProvider())

        assert first is second
        assert first.ready is True

    def test_reset(self):
        provider = FakeProvider()
        first = get_detection_backend(provider=provider)
        reset_detection_backend()

        assert provider.closed is True
        assert get_detection_backend(provider=FakeProvider()) is not first


class TestMediaPipeProvider:
    """Tests that do not need the model file."""

    def test_config(self):
        provider = MediaPipeFaceProvider({"min_detection_confidence": 0.7, "color_order": "RGB"})

        assert provider.min_detection_confidence == pytest.approx(0.7)
        assert provider.color_order == "rgb"

    def test_detect_before_load(self, frame):
        with pytest.raises(NotReady):
            MediaPipeFaceProvider().detect(frame)

    def test_missing_package(self):
        with patch("faceid.providers._MEDIAPIPE_AVAILABLE", False):
            provider = MediaPipeFaceProvider()
            assert provider.is_available() is False
            with pytest.raises(BackendUnavailable):
                provider.load()
            with pytest.raises(BackendUnavailable):
                DetectionBackend(provider).initialize()
