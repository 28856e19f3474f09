from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker

from services.data_models import (
    Base,
    ResultMeta,
    ShowProgressRecord,
    StatRecord,
    TaskLog,
)

GENERAL = "General"
USER_SECTIONS = ("OverallStats", "MovieStats", "ShowStats")


def _iso(ts: Optional[int]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Repository:
    """
    Result store for computed statistics and the task log.

    A run replaces the whole result set in one transaction; a failed or
    aborted run never touches it.
    """

    database_url: str = "sqlite:///jellystats_data.db"

    def __post_init__(self) -> None:
        self.engine = create_engine(self.database_url, future=True)
        self.SessionLocal = sessionmaker(
            bind=self.engine, expire_on_commit=False
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        """Context manager for database sessions with auto-commit."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _set_meta(self, session, last_updated: int, calculation_failed: bool) -> None:
        meta = session.query(ResultMeta).first()
        if meta is None:
            meta = ResultMeta()
            session.add(meta)
        meta.last_updated = int(last_updated)
        meta.calculation_failed = 1 if calculation_failed else 0

    @staticmethod
    def _progress_rows(
        user_name: str, user_index: int, rows: Sequence[Dict[str, Any]]
    ) -> List[ShowProgressRecord]:
        return [
            ShowProgressRecord(
                user_name=user_name,
                user_index=user_index,
                series_id=str(row.get("Id") or ""),
                position=pos,
                payload_json=json.dumps(row),
            )
            for pos, row in enumerate(rows)
        ]

    # Results

    def replace_results(
        self,
        general: Dict[str, Any],
        user_stats: Sequence[Dict[str, Any]],
        last_updated: Optional[int] = None,
        calculation_failed: bool = False,
    ) -> None:
        """
        Replace every stored result with a new run's output.

        :param general: Library-wide results keyed by statistic name
        :param user_stats: One dict per user with UserName, OverallStats,
            MovieStats, ShowStats and ShowProgresses
        :param last_updated: Epoch seconds of the run
        """
        now = int(last_updated if last_updated is not None else time.time())
        with self._session() as session:
            session.query(StatRecord).delete(synchronize_session=False)
            session.query(ShowProgressRecord).delete(synchronize_session=False)

            for pos, (key, payload) in enumerate(general.items()):
                session.add(StatRecord(
                    user_name=None,
                    section=GENERAL,
                    key=key,
                    position=pos,
                    payload_json=json.dumps(payload),
                ))

            for user_index, stat in enumerate(user_stats):
                name = stat["UserName"]
                for section in USER_SECTIONS:
                    for pos, card in enumerate(stat.get(section) or []):
                        session.add(StatRecord(
                            user_name=name,
                            user_index=user_index,
                            section=section,
                            position=pos,
                            payload_json=json.dumps(card),
                        ))
                session.add_all(self._progress_rows(
                    name, user_index, stat.get("ShowProgresses") or []
                ))

            self._set_meta(session, now, calculation_failed)

    def replace_show_progress(
        self,
        progress_by_user: Dict[str, Sequence[Dict[str, Any]]],
        last_updated: Optional[int] = None,
        calculation_failed: bool = False,
    ) -> None:
        """
        Replace the show progress tables of the given users, leaving every
        other stored statistic as it is.
        """
        now = int(last_updated if last_updated is not None else time.time())
        with self._session() as session:
            names = list(progress_by_user.keys())
            if names:
                session.query(ShowProgressRecord).filter(
                    ShowProgressRecord.user_name.in_(names)
                ).delete(synchronize_session=False)

            known = dict(
                session.query(StatRecord.user_name, func.min(StatRecord.user_index))
                .filter(StatRecord.user_name.isnot(None))
                .group_by(StatRecord.user_name)
                .all()
            )
            next_index = max(known.values(), default=-1) + 1
            for name, rows in progress_by_user.items():
                if name in known:
                    user_index = known[name]
                else:
                    user_index = next_index
                    next_index += 1
                session.add_all(self._progress_rows(name, user_index, rows))

            self._set_meta(session, now, calculation_failed)

    def _user_stat(self, session, user_name: str) -> Dict[str, Any]:
        stat: Dict[str, Any] = {"UserName": user_name}
        for section in USER_SECTIONS:
            records = (
                session.query(StatRecord)
                .filter_by(user_name=user_name, section=section)
                .order_by(StatRecord.position)
                .all()
            )
            stat[section] = [r.to_dict() for r in records]
        progress = (
            session.query(ShowProgressRecord)
            .filter_by(user_name=user_name)
            .order_by(ShowProgressRecord.position)
            .all()
        )
        stat["ShowProgresses"] = [r.to_dict() for r in progress]
        return stat

    def list_user_names(self) -> List[str]:
        """
        Users with stored results, in run order.
        """
        with self._session() as session:
            order: Dict[str, int] = {}
            for model in (StatRecord, ShowProgressRecord):
                rows = (
                    session.query(model.user_name, func.min(model.user_index))
                    .filter(model.user_name.isnot(None))
                    .group_by(model.user_name)
                    .all()
                )
                for name, index in rows:
                    order[name] = min(index, order.get(name, index))
            return sorted(order, key=lambda n: (order[n], n))

    def get_user_stats(self, user_name: str) -> Optional[Dict[str, Any]]:
        if user_name not in self.list_user_names():
            return None
        with self._session() as session:
            return self._user_stat(session, user_name)

    def get_show_progress(self, user_name: str) -> List[Dict[str, Any]]:
        with self._session() as session:
            records = (
                session.query(ShowProgressRecord)
                .filter_by(user_name=user_name)
                .order_by(ShowProgressRecord.position)
                .all()
            )
            return [r.to_dict() for r in records]

    def get_results(self) -> Dict[str, Any]:
        """
        The full document the dashboard renders.
        """
        names = self.list_user_names()
        with self._session() as session:
            meta = session.query(ResultMeta).first()
            doc: Dict[str, Any] = {
                "LastUpdated": _iso(meta.last_updated) if meta else None,
                "CalculationFailed": bool(meta.calculation_failed) if meta else False,
            }
            general = (
                session.query(StatRecord)
                .filter_by(section=GENERAL)
                .order_by(StatRecord.position)
                .all()
            )
            for record in general:
                doc[record.key] = record.to_dict()
            doc["UserStats"] = [self._user_stat(session, n) for n in names]
            return doc

    # Task log

    def create_task_log(
        self, name: str, task_type: str, execution_type: str
    ) -> int:
        """
        Create a new task log entry with RUNNING status.
        """
        now = int(time.time())
        with self._session() as session:
            task = TaskLog(
                name=name,
                type=task_type,
                execution_type=execution_type,
                started_at=now,
                result="RUNNING",
                duration_ms=0,
            )
            session.add(task)
            session.flush()
            return task.id

    def complete_task_log(
        self,
        task_id: int,
        result: str,
        log_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Mark a task log as complete with result.
        """
        now = int(time.time())
        with self._session() as session:
            task = session.query(TaskLog).filter_by(id=task_id).first()
            if not task:
                return

            task.finished_at = now
            task.duration_ms = (now - task.started_at) * 1000
            task.result = result
            if log_data:
                task.duration_ms = int(log_data.get("duration_ms", task.duration_ms))
                task.log_json = json.dumps(log_data)

    def get_latest_task(
        self, task_type: str = "statistics"
    ) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            task = (
                session.query(TaskLog)
                .filter(TaskLog.type == task_type)
                .order_by(TaskLog.started_at.desc(), TaskLog.id.desc())
                .first()
            )
            return task.to_dict() if task else None
