from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from heartdeck.load_secrets import database_url

engine = create_async_engine(database_url, echo=False)

# Centralized session factory to avoid creating it in router modules.
Session = async_sessionmaker(
    autocommit=False,
    class_=AsyncSession,
    autoflush=True,
    expire_on_commit=False,
    bind=engine,
)
