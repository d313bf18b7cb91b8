"""Database setup and session utilities for async SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- init_db: Ensures the pgvector and pg_trgm extensions exist, creates tables and the
  IVFFLAT/GIN indexes used by hybrid search.
- fetch_all: Run a read-only SQL statement in its own session and return row mappings.

Each concurrent search opens its own session; an AsyncSession must not be shared
between tasks. Configuration is read from concierge.config.settings.DATABASE_URL.
"""
from typing import Any, Dict, List, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from concierge.config import settings

# SQLAlchemy setup
engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


async def init_db() -> None:
    """Initialize database extensions, tables, and search indexes.

    Ensures pgvector and pg_trgm are available, creates tables from SQLAlchemy
    metadata, and creates the vector/trigram indexes if missing.

    This function is idempotent and safe to run multiple times.
    """
    # Import models after Base is defined
    from concierge import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm"))
        await conn.run_sync(Base.metadata.create_all)
        # IVF indexes need ANALYZE after populate for optimal perf
        await conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_chunks_embedding_ivfflat
                ON content_chunks USING ivfflat (embedding vector_cosine_ops)
                WITH (lists = 100)
                """
            )
        )
        await conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_assets_embedding_ivfflat
                ON visual_assets USING ivfflat (description_embedding vector_cosine_ops)
                WITH (lists = 50)
                """
            )
        )
        await conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_chunks_content_trgm
                ON content_chunks USING gin (content gin_trgm_ops)
                """
            )
        )


async def fetch_all(sql: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Execute a read-only statement in a dedicated session.

    Args:
        sql: SQL text with named bind parameters.
        params: Bind parameter values.

    Returns:
        List[Dict[str, Any]]: One plain dict per result row.
    """
    async with SessionLocal() as session:
        result = await session.execute(text(sql), dict(params))
        return [dict(row) for row in result.mappings().all()]

