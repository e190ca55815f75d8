# chat2sheet/core/db.py - SQLAlchemy engine and sessions for the sql ledger backend
from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Optional
import logging
import time
import threading
from contextlib import contextmanager

from chat2sheet.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Lazily built engine + session factory for one ledger database"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.echo = settings.DATABASE_ECHO if echo is None else echo
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._initialized = False
        self._lock = threading.Lock()
        # StaticPool hands every thread the same sqlite connection
        self._sqlite_lock = threading.RLock()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def initialize(self):
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            try:
                self.engine = self._create_engine()
                if self.is_sqlite:
                    event.listen(self.engine, "connect", _sqlite_foreign_keys)
                self.SessionLocal = sessionmaker(
                    bind=self.engine,
                    autoflush=False,
                    expire_on_commit=False,
                )
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                self._initialized = True
                logger.info(f"🗄️ Ledger database ready ({self.safe_url})")
            except Exception as e:
                logger.error(f"❌ Failed to initialize ledger database: {e}")
                raise

    def _create_engine(self) -> Engine:
        if self.is_sqlite:
            # StaticPool keeps an in-memory database alive for the process
            return create_engine(
                self.database_url,
                echo=self.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False, "timeout": 30},
            )

        return create_engine(
            self.database_url,
            echo=self.echo,
            poolclass=QueuePool,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_recycle=settings.DATABASE_POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args={"connect_timeout": 10, "application_name": f"chat2sheet_{settings.ENV}"},
        )

    @property
    def safe_url(self) -> str:
        """Database URL without credentials"""
        return self.database_url.split("@")[-1] if "@" in self.database_url else self.database_url

    def create_all(self):
        """Create the ledger tables that don't exist yet"""
        from chat2sheet.models import Base

        self.initialize()
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def transaction(self):
        """
        Session scope that commits on success and rolls back on error.

        Usage:
            with manager.transaction() as session:
                session.add(row)
        """
        self.initialize()
        with self._serialized():
            session = self.SessionLocal()
            try:
                yield session
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise
            finally:
                session.close()

    @contextmanager
    def _serialized(self):
        if not self.is_sqlite:
            yield
            return
        with self._sqlite_lock:
            yield

    def health_check(self) -> dict:
        try:
            self.initialize()
            start_time = time.time()
            with self._serialized(), self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
                "database": self.safe_url,
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

    def close(self):
        if self.engine:
            self.engine.dispose()
            logger.info("Ledger database connections closed")


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


db_manager = DatabaseManager()


__all__ = ["DatabaseManager", "db_manager"]
