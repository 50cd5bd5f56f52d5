"""SQLAlchemy database models for the penvault note vault."""
import datetime
from typing import Optional

from sqlalchemy import (JSON, Column, DateTime, ForeignKey, Index, Integer,
                        LargeBinary, String, Text, create_engine, event, inspect)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from penvault.config import config
from penvault.exceptions import ErrorCode, StorageError

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utcnow_naive() -> datetime.datetime:
    # SQLite has no timezone type: timestamps are stored as naive UTC
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(255), primary_key=True)
    title = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_utcnow_naive, nullable=False)
    updated_at = Column(DateTime, default=_utcnow_naive, nullable=False, index=True)
    # Derived from content on every save; safe to discard and rebuild
    tags = Column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBImage(Base):
    """Database model for an image attached to a note."""
    __tablename__ = "images"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(255), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(1024), nullable=False)
    data = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=_utcnow_naive, nullable=False, index=True)

    __table_args__ = (Index("ix_images_note_name", "note_id", "name"),)

    def __repr__(self) -> str:
        return f"<Image(id={self.id}, note_id='{self.note_id}', name='{self.name}')>"


class DBFile(Base):
    """Database model for a file attached to a note."""
    __tablename__ = "files"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(255), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(1024), nullable=False)
    mime_type = Column(String(255), nullable=False, default="application/octet-stream")
    data = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=_utcnow_naive, nullable=False, index=True)

    __table_args__ = (Index("ix_files_note_name", "note_id", "name"),)

    def __repr__(self) -> str:
        return f"<File(id={self.id}, note_id='{self.note_id}', name='{self.name}')>"


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and schema with hardened SQLite configuration.

    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - foreign_keys=ON so attachments can never outlive their note
    - StaticPool for in-memory databases (one shared connection)

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database file.

    Returns:
        The initialized engine.
    """
    db_url = db_url or config.get_db_url()

    if _is_memory_url(db_url):
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=5,
            pool_timeout=30,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not _is_memory_url(db_url):
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    _check_schema(engine)
    return engine


def _check_schema(engine: Engine) -> None:
    """Fail fast on a database file written by an incompatible schema."""
    inspector = inspect(engine)
    columns = {col["name"] for col in inspector.get_columns("notes")}
    missing = {"id", "title", "content", "created_at", "updated_at", "tags"} - columns
    if missing:
        raise StorageError(
            f"Database schema is missing note columns: {', '.join(sorted(missing))}",
            operation="init_db",
            code=ErrorCode.STORAGE_READ_FAILED,
        )


def get_session_factory(engine: Engine):
    """Get a session factory bound to ``engine``."""
    return sessionmaker(bind=engine, expire_on_commit=False)
