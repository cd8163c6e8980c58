from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from moderation.config import get_settings

settings = get_settings()
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False):
    """Create an engine with per-backend connection settings"""
    if database_url.startswith("sqlite"):
        # SQLite connections are shared with the event loop thread and ffmpeg worker threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    return create_engine(
        database_url,
        connect_args={"connect_timeout": 10},
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


engine = build_engine(settings.DATABASE_URL, settings.DB_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
