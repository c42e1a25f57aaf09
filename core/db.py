"""
Async MySQL database engine and session management.

Purpose:
- Create SQLAlchemy async engine for MySQL with aiomysql driver
- Provide async session factory for the subscription store
- Provide Base declarative class for ORM models

Production notes:
- Use connection pooling with appropriate pool_size and max_overflow
- Schema changes go through Alembic (see alembic/), not create_all
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from config.settings import settings
import logging
from typing import Optional

logger = logging.getLogger(__name__)

Base = declarative_base()

# When MYSQL_ASYNC_URL is "disabled", do not create an engine at all.
engine = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None

if settings.MYSQL_ASYNC_URL and settings.MYSQL_ASYNC_URL != "disabled":
	engine = create_async_engine(
		settings.MYSQL_ASYNC_URL,
		echo=settings.DEBUG,
		pool_pre_ping=True,
	)
	async_session_maker = async_sessionmaker(
		engine, expire_on_commit=False, class_=AsyncSession
	)
	logger.info("Async DB engine created for %s", engine.url.render_as_string(hide_password=True))
else:
	logger.warning("MYSQL_ASYNC_URL is 'disabled' – DB engine will not be created; using in-memory store.")


def db_enabled() -> bool:
	"""True when USE_DB is set and an engine exists."""
	return settings.USE_DB and async_session_maker is not None


async def create_tables() -> None:
	"""Create tables for all registered models (development convenience)."""
	if engine is None:
		return
	from models import db_models  # noqa: F401 ensure models are registered on Base
	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
	if engine is not None:
		await engine.dispose()
