"""Liveness check for the load balancer; public, no database or provider calls."""

from fastapi import APIRouter

from refyn.responses import success_response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return success_response({"status": "ok"})
