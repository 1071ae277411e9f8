"""
Enrollment API Routes

POST /enroll computes a descriptor from one photo, stores it and puts it in
the in-memory gallery. Re-enrolling replaces the previous descriptor.
"""

import logging

from fastapi import APIRouter, Depends

from api.schemas import EnrollRequest, EnrollResponse
from api.service import FaceIdService, decode_image, get_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["enrollment"])


@router.post("/enroll", response_model=EnrollResponse)
async def enroll(request: EnrollRequest, service: FaceIdService = Depends(get_service)):
    """
    Enroll a student.

    The descriptor is persisted first; the live gallery only changes once
    the store has accepted it.

    Raises:
        400: If the image cannot be decoded.
        422: If the student_id is malformed, or a detection backend is
             enabled and finds no face.
    """
    image = decode_image(request.image)
    replaced = request.student_id in service.pipeline.gallery

    descriptor = service.pipeline.describe(image)
    service.store.save_descriptor(
        request.student_id,
        descriptor,
        student_name=request.student_name,
    )
    service.pipeline.gallery.enroll(
        request.student_id, descriptor, {"student_name": request.student_name}
    )

    logger.info(f"Enrollment {'replaced' if replaced else 'created'} for {request.student_id}")

    return EnrollResponse(
        student_id=request.student_id,
        student_name=request.student_name,
        algorithm=descriptor.algorithm,
        version=descriptor.version,
        length=len(descriptor),
        replaced=replaced,
    )
