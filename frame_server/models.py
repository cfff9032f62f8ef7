import datetime
from typing import Dict, List, Optional

from sqlalchemy import DateTime, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from . import config

logger = config.logger


def _utcnow() -> datetime.datetime:
    """Return a timezone-aware UTC timestamp for SQLAlchemy defaults."""
    return datetime.datetime.now(datetime.timezone.utc)


def _database_url() -> str:
    return f"sqlite:///{config.DATABASE_PATH}"


engine = create_engine(_database_url(), connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False)
SessionLocal.configure(bind=engine)


class Base(DeclarativeBase):
    pass


class Document(Base):
    """A whole serialized JSON document, rewritten on every mutation."""

    __tablename__ = "documents"

    name: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    payload: Mapped[str] = mapped_column(Text, default="null")
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Document(name={self.name}, updated_at={self.updated_at})>"


class LogEntry(Base):
    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)
    context: Mapped[str] = mapped_column(String)
    info: Mapped[str] = mapped_column(String)

    def __repr__(self) -> str:
        return f"<LogEntry(timestamp={self.timestamp}, context={self.context}, info={self.info})>"


class ConfigEntry(Base):
    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    value: Mapped[str] = mapped_column(String)

    def __repr__(self) -> str:
        return f"<ConfigEntry(key={self.key}, value={self.value})>"


def reconfigure_engine() -> None:
    """Recreate the SQLite engine to follow the current config path."""
    global engine
    new_engine = create_engine(_database_url(), connect_args={"check_same_thread": False})
    if engine:
        engine.dispose()
    engine = new_engine
    SessionLocal.configure(bind=engine)


def init_db() -> None:
    """Initialize the database by creating all tables."""
    reconfigure_engine()
    Base.metadata.create_all(bind=engine)


def get_document(name: str) -> Optional[str]:
    """Return the raw payload of a stored document, or None when it was never written."""
    with SessionLocal() as db:
        row = db.get(Document, name)
        if row is None:
            return None
        return row.payload


def save_document(name: str, payload: str) -> None:
    """Replace the stored payload of a document."""
    timestamp = _utcnow()
    with SessionLocal() as db:
        row = db.get(Document, name)
        if row is None:
            row = Document(name=name, payload=payload, updated_at=timestamp)
            db.add(row)
        else:
            row.payload = payload
            row.updated_at = timestamp
        db.commit()


def add_log_entry(context: str, info: str) -> LogEntry:
    """Append an activity log entry, dropping the oldest ones past ``MAX_LOG_ENTRIES``."""
    with SessionLocal() as db:
        entry = LogEntry(context=context, info=info)
        db.add(entry)
        db.flush()
        cutoff = entry.id - config.MAX_LOG_ENTRIES
        if cutoff > 0:
            db.execute(delete(LogEntry).where(LogEntry.id <= cutoff))
        db.commit()
        db.refresh(entry)
        return entry


def recent_logs(limit: int = 20) -> List[LogEntry]:
    """Return the newest ``limit`` entries, oldest first."""
    with SessionLocal() as db:
        newest = db.scalars(select(LogEntry).order_by(LogEntry.id.desc()).limit(limit)).all()
        return list(reversed(newest))


def logs_after(cursor: int, limit: int = 50) -> List[LogEntry]:
    """Return up to ``limit`` entries written after the entry with id ``cursor``."""
    with SessionLocal() as db:
        stmt = select(LogEntry).where(LogEntry.id > cursor).order_by(LogEntry.id.asc()).limit(limit)
        return list(db.scalars(stmt).all())


def save_config_entry(key: str, value: str) -> None:
    """Persist a runtime setting so it survives restarts."""
    with SessionLocal() as db:
        db.merge(ConfigEntry(key=key, value=str(value)))
        db.commit()


def load_config_entries() -> Dict[str, str]:
    with SessionLocal() as db:
        return {row.key: row.value for row in db.scalars(select(ConfigEntry))}
