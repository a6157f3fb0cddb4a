"""LMS Assessment Engine - API v1 Router."""
from fastapi import APIRouter

from lms_assessment.api.v1.attempts import router as attempts_router
from lms_assessment.api.v1.tests import router as tests_router

api_router = APIRouter()

# Attempt routes first: their literal paths (/tests/my-attempts, ...) must win
# over the /tests/{test_id} patterns
api_router.include_router(attempts_router)
api_router.include_router(tests_router)
