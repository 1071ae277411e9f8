"""
Pydantic Schemas for API Request/Response Models

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts for the kiosk frontend
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from faceid.attempts import OutingType
from faceid.store import STUDENT_ID_PATTERN


# ============================================================
# Enrollment Schemas
# ============================================================

class EnrollRequest(BaseModel):
    """Request to enroll (or re-enroll) a student from one photo."""
    student_id: str = Field(..., pattern=STUDENT_ID_PATTERN, description="Student identifier (letters, digits, _ - .)")
    student_name: Optional[str] = Field(None, description="Display name")
    image: str = Field(..., description="Base64-encoded PNG/JPEG (data URLs accepted)")


class EnrollResponse(BaseModel):
    """Summary of the stored descriptor."""
    student_id: str = Field(..., description="Student identifier")
    student_name: Optional[str] = Field(None, description="Display name")
    algorithm: str = Field(..., description="Descriptor algorithm name")
    version: str = Field(..., description="Descriptor algorithm version")
    length: int = Field(..., description="Number of floats in the descriptor")
    replaced: bool = Field(..., description="True if an earlier enrollment was replaced")


# ============================================================
# Recognition Schemas
# ============================================================

class VerifyRequest(BaseModel):
    """Request for 1:1 verification."""
    student_id: str = Field(..., pattern=STUDENT_ID_PATTERN, description="Claimed student identifier")
    image: str = Field(..., description="Base64-encoded PNG/JPEG capture")


class IdentifyRequest(BaseModel):
    """Request for 1:N identification."""
    image: str = Field(..., description="Base64-encoded PNG/JPEG capture")


class MatchResponse(BaseModel):
    """Decision from verification or identification."""
    matched: bool = Field(..., description="Whether the best candidate cleared the threshold")
    candidate_id: Optional[str] = Field(None, description="Accepted student ID")
    candidate_name: Optional[str] = Field(None, description="Accepted student's display name")
    score: Optional[float] = Field(None, description="Best distance/similarity, null for an empty gallery")
    threshold: float = Field(..., description="Threshold applied")
    metric: str = Field(..., description="Metric name")
    higher_is_better: bool = Field(..., description="True for similarity metrics")


# ============================================================
# Kiosk Schemas
# ============================================================

class KioskSessionRequest(BaseModel):
    """Open a kiosk transaction."""
    outing_type: OutingType = Field(OutingType.LOCAL, description="'Local' or 'Non-Local'")


class OutingTypeRequest(BaseModel):
    """Change the outing type (resets attempts)."""
    outing_type: OutingType = Field(..., description="'Local' or 'Non-Local'")


class ScanRequest(BaseModel):
    """One capture from the kiosk camera."""
    image: str = Field(..., description="Base64-encoded PNG/JPEG capture")


class FallbackRequest(BaseModel):
    """Manual identification via printed ID or typed student number."""
    student_id: str = Field(..., pattern=STUDENT_ID_PATTERN, description="Student identified without biometrics")


class KioskSessionResponse(BaseModel):
    """Current state of a kiosk transaction."""
    session_id: str = Field(..., description="Session identifier")
    state: str = Field(..., description="idle, capturing, matching, accepted, retry_pending or exhausted")
    outing_type: OutingType = Field(..., description="Current outing type")
    attempts_made: int = Field(..., description="Failed attempts in this transaction")
    max_attempts: int = Field(..., description="Failed attempts allowed before fallback")
    remaining: int = Field(..., description="Attempts left")
    fallback_required: bool = Field(..., description="Switch to manual identification")


class ScanResponse(BaseModel):
    """Outcome of one kiosk scan."""
    session: KioskSessionResponse
    match: Optional[MatchResponse] = Field(None, description="Match decision, null if the capture failed")
    error: Optional[str] = Field(None, description="Why the capture failed")


# ============================================================
# Student Management Schemas
# ============================================================

class StudentInfo(BaseModel):
    """Enrolled student summary."""
    student_id: str = Field(..., description="Student identifier")
    student_name: Optional[str] = Field(None, description="Display name")
    algorithm: str = Field(..., description="Descriptor algorithm name")
    version: str = Field(..., description="Descriptor algorithm version")
    length: int = Field(..., description="Descriptor length")
    enrolled_at: str = Field(..., description="Enrollment timestamp")


class StudentListResponse(BaseModel):
    """Response containing list of enrolled students."""
    students: List[StudentInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of enrolled students")


class DeleteStudentResponse(BaseModel):
    """Response from student deletion."""
    success: bool = Field(..., description="Whether deletion was successful")
    student_id: str = Field(..., description="ID of deleted student")
    message: str = Field(..., description="Status message")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    algorithm: str = Field(..., description="Descriptor algorithm tag in use")
    enrolled_students: int = Field(..., description="Students in the in-memory gallery")
    detection_enabled: bool = Field(..., description="Whether a face detection backend is attached")
    detection_ready: bool = Field(..., description="Whether that backend is initialized")
    active_sessions: int = Field(..., description="Open kiosk sessions")
