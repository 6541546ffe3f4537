from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import get_settings

settings = get_settings()


def normalize_database_url(url: str) -> str:
    """Point MySQL URLs at the aiomysql driver; other URLs pass through."""
    if url.startswith("mysql://"):
        return "mysql+aiomysql://" + url[8:]
    url = url.replace("mysql+mysqldb://", "mysql+aiomysql://")
    return url.replace("mysql+pymysql://", "mysql+aiomysql://")


engine = create_async_engine(
    normalize_database_url(settings.database_url),
    pool_pre_ping=True,  # Reconnect on stale connections
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
