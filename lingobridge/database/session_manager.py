"""
Session Manager - Database connection and session management

Sessions are synchronous SQLAlchemy sessions. Async callers go through
`SessionManager.run`, which executes a function on the manager's own thread
pool: one worker for SQLite (serializing every write), `pool_size` workers
for server databases.
"""

from contextlib import contextmanager
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lingobridge.database.models.base import Base
from lingobridge.utils.async_wrappers import create_db_executor, run_in_thread
from lingobridge.utils.logger.custom_logging import LoggerMixin

T = TypeVar("T")


class SessionManager(LoggerMixin):
    """
    Manages database connections and sessions
    Uses SQLAlchemy with connection pooling
    """

    def __init__(self, database_url: str, pool_size: int = 10, max_overflow: int = 20):
        super().__init__()
        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")
        self.engine = self._create_engine(pool_size, max_overflow)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine)
        self.executor = create_db_executor(1 if self.is_sqlite else pool_size)

        self.logger.info(f"[SESSION MANAGER] Initialized with database: {self._mask_db_url(self.database_url)}")

    def _create_engine(self, pool_size: int, max_overflow: int):
        if self.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.database_url or self.database_url.rstrip("/") == "sqlite:":
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
            return create_engine(self.database_url, **kwargs)

        engine = create_engine(
            self.database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
        self.logger.info(f"[SESSION MANAGER] Engine created with pool_size={pool_size}, max_overflow={max_overflow}")
        return engine

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def create_session(self) -> Generator[Session, None, None]:
        """
        Transactional session: commits on success, rolls back on failure.

        Example:
            with session_manager.create_session() as db:
                db.add(row)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            self.logger.error(f"[SESSION MANAGER] Transaction rolled back: {type(e).__name__}: {e}")
            raise
        finally:
            session.close()

    async def run(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking database function on the DB executor."""
        return await run_in_thread(func, *args, executor=self.executor, **kwargs)

    def test_connection(self) -> bool:
        try:
            with self.create_session() as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.logger.error(f"[SESSION MANAGER] Database connection test failed: {e}")
            return False

    def close(self) -> None:
        """Dispose connections and stop the executor; call on shutdown."""
        self.executor.shutdown(wait=True)
        self.engine.dispose()
        self.logger.info("[SESSION MANAGER] All connections closed")

    @staticmethod
    def _mask_db_url(url: str) -> str:
        if '@' in url:
            protocol = url.split('//')[0]
            return f"{protocol}//***:***@{url.split('@', 1)[1]}"
        return url
