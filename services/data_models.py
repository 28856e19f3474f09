"""
Stored statistics results and task history.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _load(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class StatRecord(Base):
    """
    One stat card from a run. General cards have no user; per-user cards
    are grouped by section (OverallStats, MovieStats, ShowStats).
    """
    __tablename__ = "stat_results"

    id = Column(Integer, primary_key=True)
    user_name = Column(String(255), nullable=True)
    user_index = Column(Integer, default=0)
    section = Column(String(64), nullable=False)
    key = Column(String(128), nullable=True)
    position = Column(Integer, default=0)
    payload_json = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_stat_user", "user_name"),
        Index("idx_stat_section", "section"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return _load(self.payload_json)


class ShowProgressRecord(Base):
    """
    One row of a user's show progress table.
    """
    __tablename__ = "show_progress"

    id = Column(Integer, primary_key=True)
    user_name = Column(String(255), nullable=False)
    user_index = Column(Integer, default=0)
    series_id = Column(String(128), nullable=False)
    position = Column(Integer, default=0)
    payload_json = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_progress_user", "user_name"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return _load(self.payload_json)


class ResultMeta(Base):
    """
    Single row describing the stored result set.
    """
    __tablename__ = "result_meta"

    id = Column(Integer, primary_key=True)
    last_updated = Column(BigInteger, nullable=True)
    calculation_failed = Column(Integer, default=0)


class TaskLog(Base):
    """
    Records statistics runs and other background tasks.
    """
    __tablename__ = "task_logging"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(64), nullable=False)
    execution_type = Column(String(32), nullable=False)
    duration_ms = Column(Integer, default=0)
    started_at = Column(BigInteger, nullable=False)
    finished_at = Column(BigInteger, nullable=True)
    result = Column(String(32), nullable=False)
    log_json = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_task_started_at", "started_at"),
        Index("idx_task_result", "result"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "execution_type": self.execution_type,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "log": _load(self.log_json) if self.log_json else None,
        }
