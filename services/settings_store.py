"""
Settings storage using SQLAlchemy with Fernet encryption for sensitive fields.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Column, Integer, String, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()

MASKED_KEY = "*" * 32
DEFAULT_STATS_INTERVAL = 86400
DEFAULT_MAX_WORKERS = 4


# -------------------------
# ORM Model
# -------------------------

class Settings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    jf_host = Column(String(255), default="127.0.0.1")
    jf_port = Column(String(8), default="8096")
    jf_api_key_encrypted = Column(String(4096), nullable=True)
    tvdb_cache_dir = Column(String(1024), default="")
    stats_interval = Column(Integer, default=DEFAULT_STATS_INTERVAL)
    max_workers = Column(Integer, default=DEFAULT_MAX_WORKERS)
    last_stats_run = Column(Integer, nullable=True)

    def to_dict(self, fernet: Optional[Fernet] = None) -> Dict[str, Any]:
        """
        Convert to dict. If fernet provided, decrypt jf_api_key.
        """
        api_key_plain = None

        if fernet and self.jf_api_key_encrypted:
            try:
                api_key_plain = fernet.decrypt(
                    self.jf_api_key_encrypted.encode("utf-8")
                ).decode("utf-8")
            except InvalidToken:
                api_key_plain = None

        return {
            "jf_host": self.jf_host,
            "jf_port": self.jf_port,
            "jf_api_key": api_key_plain,
            "tvdb_cache_dir": self.tvdb_cache_dir or "",
            "stats_interval": self.stats_interval,
            "max_workers": self.max_workers,
            "last_stats_run": self.last_stats_run,
        }


# -------------------------
# Service
# -------------------------

@dataclass
class SettingsService:
    database_url: str
    encryption_key_path: str

    def __post_init__(self) -> None:
        self.engine = create_engine(self.database_url, future=True)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)
        self.fernet = Fernet(self._load_or_create_key())

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """
        Context manager for database sessions with auto-commit.
        """
        session: Session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _load_or_create_key(self) -> bytes:
        """
        Load a Fernet key from disk, or create one if it does not exist.
        """
        if not self.encryption_key_path or self.encryption_key_path == ":memory:":
            return Fernet.generate_key()

        key_file = Path(self.encryption_key_path)
        if key_file.exists():
            return key_file.read_bytes()

        key = Fernet.generate_key()
        key_file.write_bytes(key)
        return key

    def _get_or_create_row(self, session: Session) -> Settings:
        """
        Retrieve the single Settings row, creating it if missing.
        """
        obj = session.query(Settings).first()
        if obj:
            return obj

        obj = Settings()
        session.add(obj)
        session.flush()
        return obj

    @staticmethod
    def _positive_int(value: Any) -> Optional[int]:
        try:
            val = int(value)
        except (TypeError, ValueError):
            return None
        return val if val > 0 else None

    # -------------------------
    # Public API
    # -------------------------

    def get(self) -> Dict[str, Any]:
        """
        Retrieve current settings.
        """
        with self._session() as session:
            settings = self._get_or_create_row(session)
            return settings.to_dict(self.fernet)

    def update(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update settings. Handles encryption for jf_api_key automatically.
        Unknown keys are ignored.
        """
        allowed = {
            "jf_host",
            "jf_port",
            "jf_api_key",
            "tvdb_cache_dir",
            "stats_interval",
            "max_workers",
        }
        clean = {k: v for k, v in values.items() if k in allowed}

        with self._session() as session:
            settings = self._get_or_create_row(session)

            if isinstance(clean.get("jf_host"), str):
                settings.jf_host = clean["jf_host"]

            if isinstance(clean.get("jf_port"), str):
                settings.jf_port = clean["jf_port"]

            if isinstance(clean.get("tvdb_cache_dir"), str):
                settings.tvdb_cache_dir = clean["tvdb_cache_dir"].strip()

            for key in ("stats_interval", "max_workers"):
                if key in clean:
                    val = self._positive_int(clean[key])
                    if val is not None:
                        setattr(settings, key, val)

            if "jf_api_key" in clean:
                api = clean["jf_api_key"]

                # Prevent accidental overwrite with masked value
                if isinstance(api, str) and api == MASKED_KEY:
                    pass
                elif isinstance(api, str) and api.strip():
                    settings.jf_api_key_encrypted = self.fernet.encrypt(
                        api.encode("utf-8")
                    ).decode("utf-8")
                else:
                    settings.jf_api_key_encrypted = None

            return settings.to_dict(self.fernet)

    def set_last_stats_run(self, timestamp: int) -> None:
        """
        Store the timestamp of the last successful statistics run.
        """
        with self._session() as session:
            settings = self._get_or_create_row(session)
            settings.last_stats_run = int(timestamp)

    def get_last_stats_run(self) -> Optional[int]:
        with self._session() as session:
            settings = session.query(Settings).first()
            return settings.last_stats_run if settings else None
