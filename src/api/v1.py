"""Centralized v1 API router."""

from fastapi import APIRouter

from src.modules.dispute.router import router as dispute_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(dispute_router)
