from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.database import get_db
from microblog.services.revocation import RedisRevocationStore, RevocationStorageError
from microblog.utils.auth import Auth

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(auth: Auth, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    checks = {
        "database": "unhealthy",
        "revocation_store": "unhealthy",
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Logouts depend on the revocation store; without it every session is rejected
    store = auth.revocations.store
    if isinstance(store, RedisRevocationStore):
        try:
            await store.ping()
            checks["revocation_store"] = "healthy"
        except RevocationStorageError as e:
            checks["revocation_store"] = f"unhealthy: {str(e)}"
    else:
        checks["revocation_store"] = "healthy"

    overall = "healthy" if all(v == "healthy" for v in checks.values()) else "unhealthy"

    return {
        "status": overall,
        "checks": checks,
    }
