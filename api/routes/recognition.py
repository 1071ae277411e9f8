"""
Recognition API Routes

- POST /verify: 1:1 check of a capture against a claimed student
- POST /identify: 1:N search over the whole gallery

A capture that matches nobody is a normal response with matched=false.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import IdentifyRequest, MatchResponse, VerifyRequest
from api.service import FaceIdService, decode_image, get_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recognition"])


@router.post("/verify", response_model=MatchResponse)
async def verify(request: VerifyRequest, service: FaceIdService = Depends(get_service)):
    """
    Verify that a capture belongs to the claimed student.

    Raises:
        400: If the image cannot be decoded.
        404: If the student is not enrolled.
    """
    if request.student_id not in service.pipeline.gallery:
        raise HTTPException(status_code=404, detail=f"Student {request.student_id} not found")

    image = decode_image(request.image)
    result = service.pipeline.verify(request.student_id, image)
    service.store.log_scan("verify", result, student_id=request.student_id)

    return service.match_response(result, service.pipeline.verify_threshold)


@router.post("/identify", response_model=MatchResponse)
async def identify(request: IdentifyRequest, service: FaceIdService = Depends(get_service)):
    """
    Find the enrolled student a capture belongs to, if any.

    Raises:
        400: If the image cannot be decoded.
    """
    image = decode_image(request.image)
    result = service.pipeline.identify(image)
    service.store.log_scan("identify", result)

    return service.match_response(result, service.pipeline.identify_threshold)
