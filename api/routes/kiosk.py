"""
Kiosk API Routes

A kiosk session is one gate transaction. The camera posts captures to
/scan until the student is accepted or the attempts run out, at which
point the guard identifies the student manually and posts /fallback.

- POST /kiosk/sessions: open a session
- GET /kiosk/sessions/{session_id}: current state
- POST /kiosk/sessions/{session_id}/scan: one capture attempt
- POST /kiosk/sessions/{session_id}/outing-type: change outing type (resets attempts)
- POST /kiosk/sessions/{session_id}/cancel: capture UI closed (resets attempts)
- POST /kiosk/sessions/{session_id}/fallback: manual identification done
- DELETE /kiosk/sessions/{session_id}: close the session
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import (
    FallbackRequest,
    KioskSessionRequest,
    KioskSessionResponse,
    OutingTypeRequest,
    ScanRequest,
    ScanResponse,
)
from api.service import FaceIdService, KioskSession, decode_image, get_service
from faceid.errors import ImageDecodeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kiosk", tags=["kiosk"])


def _require_session(service: FaceIdService, session_id: str) -> KioskSession:
    session = service.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Kiosk session {session_id} not found")
    return session


@router.post("/sessions", response_model=KioskSessionResponse)
async def open_session(request: KioskSessionRequest, service: FaceIdService = Depends(get_service)):
    session = service.create_session(request.outing_type)
    return session.to_response()


@router.get("/sessions/{session_id}", response_model=KioskSessionResponse)
async def get_session(session_id: str, service: FaceIdService = Depends(get_service)):
    return _require_session(service, session_id).to_response()


@router.post("/sessions/{session_id}/scan", response_model=ScanResponse)
async def scan(session_id: str, request: ScanRequest, service: FaceIdService = Depends(get_service)):
    """
    Run one capture attempt.

    An undecodable capture counts as a failed attempt rather than an error.

    Raises:
        404: If the session does not exist.
        409: If attempts are exhausted (fallback must complete first).
    """
    session = _require_session(service, session_id)
    pipeline = service.pipeline

    try:
        image = decode_image(request.image)
    except ImageDecodeError as e:
        outcome = pipeline.fail_capture(session.policy, e)
    else:
        outcome = pipeline.scan(image, session.policy)

    match = None
    if outcome.result is not None:
        service.store.log_scan(
            "scan",
            outcome.result,
            outing_type=session.policy.outing_type.value,
            attempts_made=outcome.attempts_made,
        )
        match = service.match_response(outcome.result, pipeline.identify_threshold)

    return ScanResponse(session=session.to_response(), match=match, error=outcome.error)


@router.post("/sessions/{session_id}/outing-type", response_model=KioskSessionResponse)
async def change_outing_type(session_id: str, request: OutingTypeRequest,
                             service: FaceIdService = Depends(get_service)):
    session = _require_session(service, session_id)
    session.policy.change_context(request.outing_type)
    return session.to_response()


@router.post("/sessions/{session_id}/cancel", response_model=KioskSessionResponse)
async def cancel(session_id: str, service: FaceIdService = Depends(get_service)):
    session = _require_session(service, session_id)
    session.policy.cancel()
    return session.to_response()


@router.post("/sessions/{session_id}/fallback", response_model=KioskSessionResponse)
async def complete_fallback(session_id: str, request: FallbackRequest,
                            service: FaceIdService = Depends(get_service)):
    """
    Record a manual identification and start a fresh transaction.

    Raises:
        404: If the session or the student does not exist.
    """
    session = _require_session(service, session_id)
    if service.store.get_student(request.student_id) is None:
        raise HTTPException(status_code=404, detail=f"Student {request.student_id} not found")

    logger.info(
        f"Manual identification of {request.student_id} in {session_id} "
        f"after {session.policy.attempts_made} failed attempts"
    )
    session.policy.complete_fallback()
    return session.to_response()


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, service: FaceIdService = Depends(get_service)):
    if not service.close_session(session_id):
        raise HTTPException(status_code=404, detail=f"Kiosk session {session_id} not found")
    return {"success": True, "session_id": session_id}
