"""Shared runtime dependencies for the OAuth proxy."""
import redis.asyncio as redis

# Global Redis client (initialized in main.py lifespan). Used only as a
# cache for upstream discovery documents; None means "no cache".
redis_client: redis.Redis | None = None
