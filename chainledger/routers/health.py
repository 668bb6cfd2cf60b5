"""Health check route."""

from datetime import datetime
from fastapi import APIRouter

from chainledger.services.chain_service import is_rebuild_running

router = APIRouter()


@router.get("/api/health")
async def health_check():
    """Simple health check endpoint"""
    return {
        "status": "ok",
        "service": "chainledger",
        "rebuild_running": is_rebuild_running(),
        "timestamp": datetime.now().isoformat(),
    }
