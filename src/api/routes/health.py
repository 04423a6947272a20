"""
Health check API route
"""

from datetime import datetime
from fastapi import APIRouter, HTTPException

from config.settings import ENV, RESEND_API_KEY, STRIPE_SECRET_KEY
from database.connection import get_db_pool

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness plus database connectivity; processor and e-mail report only whether they are configured"""
    db_pool = get_db_pool()
    if db_pool is None:
        raise HTTPException(status_code=503, detail="Database pool not initialized")

    try:
        async with db_pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Health check failed: {str(e)}")

    return {
        "status": "healthy",
        "environment": ENV,
        "timestamp": datetime.utcnow().isoformat(),
        "database": "connected",
        "payments": "stripe_configured" if STRIPE_SECRET_KEY else "stripe_not_configured",
        "email": "resend_configured" if RESEND_API_KEY else "resend_not_configured"
    }
