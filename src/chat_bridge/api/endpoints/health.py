"""Liveness probe shared by the hub and relay applications."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["system"])


@router.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> str:
    """Report that the process is serving requests; no dependency checks."""
    return "OK"
