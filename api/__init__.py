"""
API Layer for the Gate-Pass Face Identity service

This package provides the FastAPI-based API layer that exposes:
- REST endpoints for enrollment, 1:1 verification and 1:N identification
- Kiosk scan sessions with bounded retries and fallback
- Student management and health checks
"""
