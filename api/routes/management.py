"""
Student Management API Routes

- GET /students: List all enrolled students
- GET /students/{student_id}: Get student details
- DELETE /students/{student_id}: Delete an enrolled student
"""

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import DeleteStudentResponse, StudentInfo, StudentListResponse
from api.service import FaceIdService, get_service

router = APIRouter(tags=["students"])


def _to_info(student) -> StudentInfo:
    return StudentInfo(
        student_id=student["student_id"],
        student_name=student["student_name"],
        algorithm=student["algorithm"],
        version=student["version"],
        length=student["length"],
        enrolled_at=str(student["enrolled_at"]),
    )


@router.get("/students", response_model=StudentListResponse)
async def list_students(service: FaceIdService = Depends(get_service)):
    """List all enrolled students in roster order."""
    students = service.store.list_students()
    return StudentListResponse(
        students=[_to_info(s) for s in students],
        total=len(students),
    )


@router.get("/students/{student_id}", response_model=StudentInfo)
async def get_student(student_id: str, service: FaceIdService = Depends(get_service)):
    """
    Raises:
        404: If the student is not found.
    """
    student = service.store.get_student(student_id)
    if student is None:
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")
    return _to_info(student)


@router.delete("/students/{student_id}", response_model=DeleteStudentResponse)
async def delete_student(student_id: str, service: FaceIdService = Depends(get_service)):
    """
    Delete an enrolled student from the store and the live gallery.

    Raises:
        404: If the student is not found.
    """
    removed_from_gallery = service.pipeline.gallery.remove(student_id)
    deleted = service.store.delete_student(student_id)

    if not (deleted or removed_from_gallery):
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")

    return DeleteStudentResponse(
        success=True,
        student_id=student_id,
        message=f"Student {student_id} deleted successfully",
    )
