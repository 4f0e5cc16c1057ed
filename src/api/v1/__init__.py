"""
API v1 package.

Contains versioned API routes for registration, authentication, profiles and
organizations.
"""

from fastapi import APIRouter

from src.api.v1 import auth, organizations, profile, registration

router = APIRouter()
router.include_router(registration.router)
router.include_router(auth.router)
router.include_router(profile.router)
router.include_router(organizations.router)

__all__ = ["router"]
