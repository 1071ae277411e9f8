"""
API Routes Package

This package contains route handlers organized by feature:
- enrollment.py: enroll a student from a photo
- recognition.py: 1:1 verification and 1:N identification
- kiosk.py: gate kiosk scan sessions
- management.py: list, view and delete enrolled students
"""

from api.routes.enrollment import router as enrollment_router
from api.routes.recognition import router as recognition_router
from api.routes.kiosk import router as kiosk_router
from api.routes.management import router as management_router

__all__ = [
    "enrollment_router",
    "recognition_router",
    "kiosk_router",
    "management_router",
]
