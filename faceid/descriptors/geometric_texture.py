"""
Geometric + Texture-Energy Composite descriptor.

Combines two kinds of evidence that stay stable between a months-old
enrollment photo and a fresh kiosk capture:

1. Facial geometry: scale-invariant distance ratios between landmarks of a
   fixed, pre-aligned template, normalized by inter-eye distance. This
   strategy does no landmark detection of its own.
2. Periocular texture: a Gabor filter bank (4 orientations x 2 wavelengths)
   applied as a weighted sum over each eye rectangle. Each energy is the
   magnitude of an even/odd kernel pair, so it does not depend on where the
   texture's phase falls inside the rectangle.

The geometry block is identical for every capture, so on its own it would
make all descriptors look alike under cosine similarity. Each block is
therefore L2-normalized separately, the texture energies are centered on
their mean, and the geometry block is down-weighted before the blocks are
joined, tiled to the target length and L2-normalized again.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from faceid.descriptors.interfaces import DescriptorAlgorithm

logger = logging.getLogger(__name__)

# Template defined on a 64x64 aligned face
TEMPLATE_SIZE = 64

LANDMARKS: Dict[str, Tuple[float, float]] = {
    "left_eye_outer": (12.0, 28.0),
    "left_eye_inner": (26.0, 28.0),
    "right_eye_inner": (38.0, 28.0),
    "right_eye_outer": (52.0, 28.0),
    "nose_tip": (32.0, 42.0),
    "mouth_center": (32.0, 52.0),
    "chin_tip": (32.0, 62.0),
}

# (x, y, width, height)
LEFT_EYE_RECT = (10, 22, 20, 12)
RIGHT_EYE_RECT = (34, 22, 20, 12)

# (theta, lambd) pairs; sigma is ~0.56 lambd, about one octave of bandwidth
GABOR_BANK = tuple(
    {"theta": theta, "lambd": lambd, "sigma": 0.56 * lambd, "gamma": 0.5}
    for theta in (0.0, math.pi / 4, math.pi / 2, 3 * math.pi / 4)
    for lambd in (4.0, 8.0)
)

# Relative weight of the (constant) geometry block against the texture block
GEOMETRY_WEIGHT = 0.25


def _distance(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


def geometric_ratios(landmarks: Dict[str, Tuple[float, float]]) -> np.ndarray:
    """
    Compute the 8 geometric features for a landmark set.

    Six landmark distances are divided by the inter-eye distance (inner
    corners), then two derived ratios are appended.
    """
    inter_eye = _distance(landmarks["left_eye_inner"], landmarks["right_eye_inner"])
    norm = inter_eye if inter_eye > 0 else 1.0

    features = [
        _distance(landmarks["left_eye_outer"], landmarks["left_eye_inner"]) / norm,
        _distance(landmarks["right_eye_inner"], landmarks["right_eye_outer"]) / norm,
        _distance(landmarks["nose_tip"], landmarks["mouth_center"]) / norm,
        _distance(landmarks["mouth_center"], landmarks["chin_tip"]) / norm,
        _distance(landmarks["left_eye_inner"], landmarks["nose_tip"]) / norm,
        _distance(landmarks["right_eye_inner"], landmarks["nose_tip"]) / norm,
    ]
    features.append(features[0] / (features[2] + 1e-6))
    features.append(features[3] / (features[4] + 1e-6))
    return np.asarray(features, dtype=np.float64)


def gabor_pair(width: int, height: int, params: Dict[str, float]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Even (psi=0) and odd (psi=pi/2) Gabor kernels cropped to width x height.

    cv2.getGaborKernel always returns odd side lengths, so an even-sized
    region drops the kernel's last row or column.
    """
    kernels = []
    for psi in (0.0, math.pi / 2):
        kernel = cv2.getGaborKernel(
            (width, height),
            params["sigma"],
            params["theta"],
            params["lambd"],
            params["gamma"],
            psi=psi,
            ktype=cv2.CV_64F,
        )
        kernels.append(kernel[:height, :width])
    return kernels[0], kernels[1]


def _unit(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return np.zeros_like(vector)
    return vector / norm


class GeometricTextureComposite(DescriptorAlgorithm):
    """
    Landmark-ratio geometry plus periocular Gabor texture energy.

    Args:
        config: Dictionary with optional keys:
            - grid_size: Side length of the normalized grid (default 64)
            - length: Target descriptor length (default 128)
            - metric: "cosine" (default) or "euclidean"
    """

    name = "geometric_texture"
    version = "2"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.grid_size = int(config.get("grid_size", TEMPLATE_SIZE))
        self._length = int(config.get("length", 128))
        self.metric_name = str(config.get("metric", "cosine")).lower()

        if self._length < 1:
            raise ValueError(f"length must be positive, got {self._length}")
        if self.metric_name not in ("cosine", "euclidean"):
            raise ValueError(f"metric must be 'cosine' or 'euclidean', got {self.metric_name!r}")

        scale = self.grid_size / float(TEMPLATE_SIZE)
        self.eye_rects = [self._scale_rect(LEFT_EYE_RECT, scale), self._scale_rect(RIGHT_EYE_RECT, scale)]

        # Ratios are scale-free, so the template features are fixed
        self._geometry = _unit(geometric_ratios(LANDMARKS)) * GEOMETRY_WEIGHT

        self._filter_banks: List[List[Tuple[np.ndarray, np.ndarray]]] = []
        for _, _, w, h in self.eye_rects:
            bank = []
            for params in GABOR_BANK:
                scaled = dict(params, lambd=params["lambd"] * scale, sigma=params["sigma"] * scale)
                bank.append(gabor_pair(w, h, scaled))
            self._filter_banks.append(bank)

    def _scale_rect(
        self, rect: Tuple[int, int, int, int], scale: float
    ) -> Tuple[int, int, int, int]:
        x, y, w, h = (int(round(v * scale)) for v in rect)
        x = min(max(x, 0), self.grid_size - 1)
        y = min(max(y, 0), self.grid_size - 1)
        w = max(1, min(w, self.grid_size - x))
        h = max(1, min(h, self.grid_size - y))
        return x, y, w, h

    @property
    def length(self) -> int:
        return self._length

    def texture_energies(self, grid: np.ndarray) -> np.ndarray:
        """Filter-bank energies for both eye regions (16 values)."""
        pixels = grid.astype(np.float64) / 255.0
        energies = []
        for (x, y, w, h), bank in zip(self.eye_rects, self._filter_banks):
            region = pixels[y:y + h, x:x + w]
            # Flat regions carry no texture
            region = region - region.mean()
            count = region.size
            for even, odd in bank:
                energies.append(math.hypot(float(np.sum(region * even)), float(np.sum(region * odd))) / count)
        return np.asarray(energies, dtype=np.float64)

    def extract_values(self, grid: np.ndarray) -> np.ndarray:
        energies = self.texture_energies(grid)
        texture = _unit(energies - energies.mean())

        raw = np.concatenate([self._geometry, texture])
        tiled = np.resize(raw, self._length)

        norm = float(np.linalg.norm(tiled))
        if norm == 0.0:
            return np.zeros(self._length, dtype=np.float32)
        return (tiled / norm).astype(np.float32)

    def create_metric(self, config: Dict[str, Any]):
        from faceid.matching.metrics import CosineSimilarityMetric, EuclideanMetric

        if self.metric_name == "euclidean":
            return EuclideanMetric()
        return CosineSimilarityMetric()
