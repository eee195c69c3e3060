"""Database engine and session management."""

from contextlib import contextmanager
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with connection pooling."""
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,  # Number of connections to maintain
        max_overflow=20,  # Max connections beyond pool_size
        pool_timeout=30,  # Seconds to wait for connection from pool
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,
    )


class Database:
    """
    Handle around an engine and its session factory.
    
    Constructed once by the application lifespan and passed to the services
    that need it; disposed on shutdown.
    """
    
    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    
    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "Database":
        return cls(create_db_engine(database_url, echo=echo))
    
    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session: commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    
    def dispose(self) -> None:
        self.engine.dispose()
