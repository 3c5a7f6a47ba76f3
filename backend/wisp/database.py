"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool
from wisp.config import settings


def build_engine(database_url: str):
    """Create the SQLAlchemy engine for the configured database."""
    if database_url.startswith("sqlite"):
        # Local development and tests
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

    # Use NullPool for pooler connections (Supabase pooler, port 6543)
    if "pooler.supabase.com" in database_url or database_url.endswith(":6543"):
        return create_engine(
            database_url,
            poolclass=NullPool,  # Required for pooler connections
            echo=settings.environment == "development",
        )

    # Direct connection for stationary servers
    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=10,
        echo=settings.environment == "development",
    )


engine = build_engine(settings.database_url)

# Instances are handed to the worker after their session closes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
