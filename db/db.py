from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# Use centralized settings for database configuration
from config.settings import settings

_db_config = settings.get_database_config()

engine = create_async_engine(
    _db_config.pop("url"),
    future=True,
    **_db_config
)

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()
