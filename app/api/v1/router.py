"""API V1 Router"""

from fastapi import APIRouter

from app.api.v1.endpoints import admin, courses, refunds, teacher_refunds

# Create API v1 router
api_router = APIRouter()

api_router.include_router(courses.router, prefix="/courses", tags=["Course Lifecycle"])
api_router.include_router(refunds.router, prefix="/refunds", tags=["Refunds (Student)"])
api_router.include_router(teacher_refunds.router, prefix="/teacher/refunds", tags=["Refunds (Teacher)"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
