# app/services/redis_store.py - Module-level helpers over the pooled client
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


async def ping() -> bool:
    return await fast_redis.ping()


async def health_check() -> dict:
    """Round-trip a throwaway key to prove reads and writes work."""
    try:
        ping_success = await ping()

        if not ping_success:
            return {
                "healthy": False,
                "ping": False,
                "error": "Redis ping failed",
                "service": "redis_store",
            }

        test_key = "health_check_test"
        test_value = "test_value_123"

        set_success = await fast_redis.set_with_ttl(test_key, test_value, 10)
        get_result = await fast_redis.get(test_key) if set_success else None
        get_success = get_result == test_value

        if set_success:
            await fast_redis.delete(test_key)

        return {
            "healthy": set_success and get_success,
            "ping": ping_success,
            "set_get_operations": set_success and get_success,
            "service": "redis_store",
        }

    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return {"healthy": False, "error": str(e), "service": "redis_store"}
