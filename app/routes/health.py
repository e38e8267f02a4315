# app/routes/health.py - Liveness, readiness and provider setup status
import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.services.redis_store import health_check as redis_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "digest-delivery"}


@router.get("/readyz")
async def readyz():
    """Readiness check across Redis and the database pool."""
    checks = {}
    overall_ok = True

    # 1) Redis
    t0 = time.time()
    redis_health = await redis_health_check()
    redis_ok = bool(redis_health.get("healthy"))
    checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    if not redis_ok:
        checks["redis"]["error"] = redis_health.get("error", "Redis unhealthy")
    overall_ok = overall_ok and redis_ok

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/setup/status")
async def setup_status():
    """Which delivery providers are configured. Missing keys disable features, not the app."""
    return {
        "environment": settings.environment,
        "providers": {
            "voice": settings.twilio_configured(),
            "sms": settings.twilio_configured(),
            "whatsapp": settings.whatsapp_configured(),
            "voice_catalog": settings.elevenlabs_configured(),
        },
        "status_callback_configured": bool(settings.TWILIO_STATUS_CALLBACK_URL),
    }
