# services/share-service/fileshare/database.py
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
import redis.asyncio as redis
from .config import settings

# Database Engine
engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Redis Client (initialized at startup)
redis_client = None

async def init_redis():
    """Initialize Redis connection"""
    global redis_client
    client = await redis.from_url(settings.REDIS_URL)
    await client.ping()
    redis_client = client
    return redis_client

async def close_redis():
    """Close Redis connection"""
    global redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None

async def get_redis():
    """Get Redis client instance (None when Redis is unavailable)"""
    return redis_client

async def create_tables():
    """Create all tables that do not exist yet"""
    from .models.database import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
