"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.venuin.api.v1 import admin, auth, health, onboarding, tenants, venues

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(admin.router)
router.include_router(tenants.router)
router.include_router(venues.router)
router.include_router(onboarding.router)
