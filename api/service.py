"""
Service container for the API.

Holds the descriptor store, the pipeline (with its in-memory gallery) and
the open kiosk sessions. One instance is built at startup and stored on
app.state; route handlers fetch it with the get_service dependency.
"""

import base64
import binascii
import logging
import math
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
from fastapi import Request

from api.schemas import KioskSessionResponse, MatchResponse
from faceid.attempts import AttemptPolicy, OutingType
from faceid.config import get_project_root
from faceid.errors import ImageDecodeError
from faceid.matching import MatchResult
from faceid.pipeline import FaceIdentityPipeline, build_pipeline
from faceid.providers import DetectionBackend, get_detection_backend
from faceid.store import DescriptorStore, load_gallery

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SEC = 900.0
DEFAULT_MAX_SESSIONS = 32


def decode_image(data: str) -> np.ndarray:
    """
    Decode a base64-encoded PNG/JPEG image to a BGR numpy array.

    Data URLs ("data:image/png;base64,...") are accepted.

    Raises:
        ImageDecodeError: If the payload is not valid base64 or not an image.
    """
    if "," in data and data.lstrip().startswith("data:"):
        data = data.split(",", 1)[1]

    try:
        img_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 image data: {e}") from e

    if not img_bytes:
        raise ImageDecodeError("Empty image payload")

    frame = cv2.imdecode(np.frombuffer(img_bytes, np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise ImageDecodeError("Payload is not a decodable image")
    return frame


def _resolve_path(path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else get_project_root() / p


class KioskSession:
    """One gate transaction with its attempt policy."""

    def __init__(self, session_id: str, policy: AttemptPolicy):
        self.session_id = session_id
        self.policy = policy
        self.last_used = time.monotonic()

    def touch(self):
        self.last_used = time.monotonic()

    def to_response(self) -> KioskSessionResponse:
        return KioskSessionResponse(session_id=self.session_id, **self.policy.to_dict())


class FaceIdService:
    """
    Application state shared by all routes.

    Args:
        config: Full configuration dictionary.
        store: Descriptor persistence.
        pipeline: Face identity pipeline; its gallery mirrors the store.
    """

    def __init__(self, config: Dict[str, Any], store: DescriptorStore, pipeline: FaceIdentityPipeline):
        self.config = config
        self.store = store
        self.pipeline = pipeline
        self.attempts_config = dict(config.get("attempts") or {})
        self.sessions: Dict[str, KioskSession] = {}

        kiosk_config = config.get("kiosk") or {}
        self.session_ttl_sec = float(kiosk_config.get("session_ttl_sec", DEFAULT_SESSION_TTL_SEC))
        self.max_sessions = int(kiosk_config.get("max_sessions", DEFAULT_MAX_SESSIONS))

    # ------------------------------------------------------------------
    # Match responses
    # ------------------------------------------------------------------

    def match_response(self, result: MatchResult, threshold: float) -> MatchResponse:
        candidate_name = None
        if result.candidate_id is not None:
            entry = self.pipeline.gallery.get(result.candidate_id)
            if entry is not None:
                candidate_name = entry.metadata.get("student_name")

        metric = self.pipeline.matcher.metric
        return MatchResponse(
            matched=result.matched,
            candidate_id=result.candidate_id,
            candidate_name=candidate_name,
            score=result.score if math.isfinite(result.score) else None,
            threshold=threshold,
            metric=metric.name,
            higher_is_better=metric.higher_is_better,
        )

    # ------------------------------------------------------------------
    # Kiosk sessions
    # ------------------------------------------------------------------

    def expire_sessions(self) -> List[str]:
        """
        Drop sessions idle for longer than kiosk.session_ttl_sec.

        Returns:
            The ids of the sessions that were dropped.
        """
        cutoff = time.monotonic() - self.session_ttl_sec
        expired = [sid for sid, s in self.sessions.items() if s.last_used < cutoff]
        for session_id in expired:
            del self.sessions[session_id]
        if expired:
            logger.info(f"Expired {len(expired)} idle kiosk session(s)")
        return expired

    def create_session(self, outing_type: OutingType) -> KioskSession:
        """
        Open a session. At kiosk.max_sessions the least recently used one is dropped.
        """
        self.expire_sessions()
        while self.sessions and len(self.sessions) >= self.max_sessions:
            oldest = min(self.sessions.values(), key=lambda s: s.last_used)
            del self.sessions[oldest.session_id]
            logger.warning(f"Session limit {self.max_sessions} reached; dropped {oldest.session_id}")

        session = KioskSession(
            session_id=f"ks_{uuid.uuid4().hex[:12]}",
            policy=AttemptPolicy.from_config(self.attempts_config, outing_type=outing_type),
        )
        self.sessions[session.session_id] = session
        logger.info(f"Opened kiosk session {session.session_id} ({outing_type.value})")
        return session

    def get_session(self, session_id: str) -> Optional[KioskSession]:
        """Live session by id; looking it up counts as activity."""
        self.expire_sessions()
        session = self.sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def close_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    def close(self):
        self.sessions.clear()
        self.store.close()
        if self.pipeline.detection_backend is not None:
            self.pipeline.detection_backend.close()


def build_service(config: Dict[str, Any]) -> FaceIdService:
    """
    Build the store, load the gallery and wire the pipeline.

    Raises:
        BackendUnavailable: If detection is enabled but its backend cannot load.
    """
    storage_config = config.get("storage") or {}
    store = DescriptorStore(
        storage_dir=str(_resolve_path(storage_config.get("descriptors_dir", "storage/descriptors"))),
        db_path=str(_resolve_path(storage_config.get("db_path", "storage/faceid.sqlite"))),
    )

    detection_config = config.get("detection") or {}
    detection_backend: Optional[DetectionBackend] = None
    if detection_config.get("enabled", False):
        detection_backend = get_detection_backend(config=detection_config)

    pipeline = build_pipeline(config, detection_backend=detection_backend)
    pipeline.gallery = load_gallery(store, expected_tag=pipeline.tag)

    logger.info(f"Gallery loaded: {len(pipeline.gallery)} students ({pipeline.tag})")
    return FaceIdService(config, store, pipeline)


def get_service(request: Request) -> FaceIdService:
    """FastAPI dependency returning the service built at startup."""
    return request.app.state.service
