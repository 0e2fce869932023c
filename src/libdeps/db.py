"""Persistent storage of installation records and installation logs."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from sqlalchemy import Column, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from .libdeps import APP_DIRS
from .models import normalize_name, records_from_json, records_to_json

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import InstallationRecord

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(APP_DIRS.user_data_dir) / "libdeps.sqlite"

INSTALLED_LIBRARIES_KEY = "installed_libraries"
INSTALLATION_LOGS_KEY = "installation_logs"
MAX_INSTALLATION_LOGS = 50


class Base(DeclarativeBase):
    """Base class for all database models."""


class Preference(Base):
    """A single key/value preference; values are JSON documents."""

    __tablename__ = "preferences"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class RecordStore:
    """Stores the installed `InstallationRecord`s and the installation logs.

    Records are kept as one JSON array under the ``installed_libraries`` key and logs
    as one JSON object under ``installation_logs``. Every access takes a lock, so the
    store can be shared by concurrently running installations.
    """

    def __init__(self, db: str | Path = ":memory:") -> None:
        """Initialize the store.

        Args:
            db: Path of the SQLite database, an SQLAlchemy URL, or ``":memory:"``

        """
        if str(db) in (":memory:", "sqlite:///:memory:", "sqlite://"):
            db = "sqlite://"
        elif isinstance(db, str) and (db.startswith("sqlite:///") or "://" not in db):
            db = Path(db.removeprefix("sqlite:///"))
        if isinstance(db, Path):
            db.parent.mkdir(parents=True, exist_ok=True)
            db = f"sqlite:///{db.absolute()!s}"
        self.db: str = db
        self._session: Any = None
        self._engine: Any = None
        self._entries: int = 0
        self._lock = threading.RLock()

    def open(self) -> None:
        """Open the database connection."""
        if self.db == "sqlite://":
            # a single shared connection, or every thread would see its own empty database
            engine = create_engine(self.db, poolclass=StaticPool, connect_args={"check_same_thread": False})
        elif self.db.startswith("sqlite:"):
            engine = create_engine(self.db, connect_args={"check_same_thread": False})
        else:
            engine = create_engine(self.db)
        Base.metadata.create_all(engine)
        self._engine = engine
        self._session = sessionmaker(bind=engine)()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._session is not None:
                self._session.close()
                self._session = None
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    def __enter__(self) -> Self:
        with self._lock:
            if self._entries == 0:
                self.open()
            self._entries += 1
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        with self._lock:
            self._entries -= 1
            if self._entries == 0:
                self.close()

    @property
    def session(self) -> Any:  # noqa: ANN401
        if self._session is None:
            self.open()
        return self._session

    def _get(self, key: str) -> str | None:
        preference = self.session.get(Preference, key)
        return None if preference is None else preference.value

    def _put(self, key: str, value: str) -> None:
        preference = self.session.get(Preference, key)
        if preference is None:
            self.session.add(Preference(key=key, value=value))
        else:
            preference.value = value
        self.session.commit()

    # Installation records

    def load_records(self) -> list[InstallationRecord]:
        with self._lock:
            text = self._get(INSTALLED_LIBRARIES_KEY)
        try:
            return records_from_json(text)
        except ValueError:
            logger.exception("The stored installation records are corrupt; ignoring them")
            return []

    def save_records(self, records: Iterable[InstallationRecord]) -> None:
        with self._lock:
            self._put(INSTALLED_LIBRARIES_KEY, records_to_json(records))

    def get_record(self, name: str) -> InstallationRecord | None:
        key = normalize_name(name)
        for record in self.load_records():
            if normalize_name(record.name) == key:
                return record
        return None

    def upsert_record(self, record: InstallationRecord) -> None:
        """Insert `record`, replacing any stored record with the same name."""
        key = normalize_name(record.name)
        with self._lock:
            records = [r for r in self.load_records() if normalize_name(r.name) != key]
            records.append(record)
            self.save_records(records)

    def delete_record(self, name: str) -> bool:
        """Delete the record named `name`.

        Returns:
            Whether a record was deleted

        """
        key = normalize_name(name)
        with self._lock:
            records = self.load_records()
            kept = [r for r in records if normalize_name(r.name) != key]
            if len(kept) == len(records):
                return False
            self.save_records(kept)
        return True

    # Installation logs

    def installation_logs(self) -> dict[str, str]:
        """Get the stored installation logs, oldest first, keyed by ``<package>_<epoch ms>``."""
        with self._lock:
            text = self._get(INSTALLATION_LOGS_KEY)
        if not text:
            return {}
        try:
            logs = json.loads(text)
        except ValueError:
            logger.exception("The stored installation logs are corrupt; ignoring them")
            return {}
        return {str(k): str(v) for k, v in logs.items()} if isinstance(logs, dict) else {}

    def save_installation_log(self, package: str, text: str) -> str:
        """Append an installation log, keeping only the `MAX_INSTALLATION_LOGS` most recent.

        Returns:
            The key the log was stored under

        """
        with self._lock:
            logs = self.installation_logs()
            key = f"{package}_{int(time.time() * 1000)}"
            suffix = 1
            while key in logs:
                key = f"{package}_{int(time.time() * 1000)}_{suffix}"
                suffix += 1
            logs[key] = text
            while len(logs) > MAX_INSTALLATION_LOGS:
                del logs[next(iter(logs))]
            self._put(INSTALLATION_LOGS_KEY, json.dumps(logs))
        return key

    def clear(self) -> None:
        with self._lock:
            self.session.query(Preference).delete()
            self.session.commit()
