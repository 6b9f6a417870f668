"""Session memory: what a consumer has already been told.

Each session is a JSON document under ``sessions/<id>.json`` recording the
patterns, files, root causes, fixes and error fingerprints already
communicated, plus the hash of every report sent. Reports are filtered
against it so repeated status checks only surface new information.
"""

from __future__ import annotations

import json
import os
import re
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from failure_triage.core.errors import SessionError
from failure_triage.models.report import SessionAwareReport, SessionContext
from failure_triage.utils.fs import write_text

log = structlog.get_logger()

CURRENT_SESSION_FILE = "current-session"
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
COMMUNICATED_KINDS = ("patterns", "files", "root_causes", "fixes", "errors")


@dataclass(frozen=True)
class ReportItems:
    """The identifiable pieces of one report."""

    report_hash: str
    patterns: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    root_causes: tuple[str, ...] = ()
    fixes: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    def by_kind(self) -> dict[str, tuple[str, ...]]:
        return {kind: getattr(self, kind) for kind in COMMUNICATED_KINDS}


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """``{base36 epoch millis}-{8 random hex}``."""
    return f"{to_base36(int(time.time() * 1000))}-{secrets.token_hex(4)}"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SessionManager:
    """Persists per-consumer session state in the cache directory.

    Example:
        sessions = SessionManager(config.paths.cache_path)
        session_id = sessions.current_session_id()
        filtered = sessions.filter_for_session(session_id, items)
        sessions.record_communicated(session_id, items)
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_hours: int = 24,
        env_var: str = "TRIAGE_SESSION_ID",
    ) -> None:
        self._cache_dir = cache_dir
        self._session_dir = cache_dir / "sessions"
        self._ttl = timedelta(hours=ttl_hours)
        self._env_var = env_var

    @property
    def session_dir(self) -> Path:
        return self._session_dir

    def create_session(self) -> str:
        session = self._init_session(generate_session_id())
        self._save(session)
        log.info("session_created", session_id=session.session_id)
        return session.session_id

    def get_or_create_session(self, session_id: str | None = None) -> SessionContext:
        """Load a live session, or start a fresh one under the same id.

        Raises:
            SessionError: If ``session_id`` is not a valid id
        """
        if session_id is not None:
            existing = self.load_session(session_id)
            if existing is not None:
                return existing

        session = self._init_session(session_id or generate_session_id())
        self._save(session)
        log.info("session_created", session_id=session.session_id)
        return session

    def load_session(self, session_id: str) -> SessionContext | None:
        """Stored session, or None when missing, unreadable or expired."""
        path = self._path(session_id)
        if not path.is_file():
            return None
        try:
            session = SessionContext.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError) as e:
            log.warning("session_unreadable", session_id=session_id, error=str(e))
            return None
        if self._is_expired(session):
            log.debug("session_expired", session_id=session_id)
            return None
        return session

    def record_communicated(
        self, session_id: str, items: ReportItems, tokens: int = 0
    ) -> SessionContext | None:
        """Merge a sent report into the session; None when there is no session.

        Args:
            session_id: Target session
            items: What the report contained
            tokens: Estimated size of the report as sent
        """
        session = self.load_session(session_id)
        if session is None:
            return None

        for kind, values in items.by_kind().items():
            session.communicated[kind].update(values)
        if items.report_hash:
            session.report_hashes.append(items.report_hash)
            session.last_report_hash = items.report_hash
        session.last_updated = _now()
        session.total_reports += 1
        session.tokens_estimated += tokens

        self._save(session)
        return session

    def filter_for_session(self, session_id: str | None, items: ReportItems) -> SessionAwareReport:
        """Reduce a report to what this session has not seen yet."""
        session = self.load_session(session_id) if session_id else None
        if session is None:
            return SessionAwareReport(
                is_new=True,
                new_only=False,
                new_patterns=items.patterns,
                new_files=items.files,
                new_root_causes=items.root_causes,
                new_fixes=items.fixes,
                new_errors=items.errors,
                already_known={"patterns": (), "root_causes": (), "fixes": ()},
            )

        known = {
            "patterns": tuple(sorted(session.communicated["patterns"])),
            "root_causes": tuple(sorted(session.communicated["root_causes"])),
            "fixes": tuple(sorted(session.communicated["fixes"])),
        }

        if items.report_hash and session.last_report_hash == items.report_hash:
            return SessionAwareReport(
                is_new=False,
                new_only=True,
                already_known=known,
                skip_patterns=True,
                skip_root_causes=True,
                skip_fixes=True,
            )

        fresh = {
            kind: tuple(v for v in values if v not in session.communicated[kind])
            for kind, values in items.by_kind().items()
        }
        return SessionAwareReport(
            is_new=bool(fresh["patterns"] or fresh["root_causes"] or fresh["fixes"]),
            new_only=True,
            new_patterns=fresh["patterns"],
            new_files=fresh["files"],
            new_root_causes=fresh["root_causes"],
            new_fixes=fresh["fixes"],
            new_errors=fresh["errors"],
            already_known=known,
            skip_patterns=not fresh["patterns"],
            skip_root_causes=not fresh["root_causes"],
            skip_fixes=not fresh["fixes"],
        )

    def get_session_summary(self, session_id: str) -> str | None:
        session = self.load_session(session_id)
        if session is None:
            return None
        return " | ".join(
            [
                f"Session: {session_id}",
                f"Reports: {session.total_reports}",
                f"Known patterns: {len(session.communicated['patterns'])}",
                f"Known files: {len(session.communicated['files'])}",
                f"Known fixes: {len(session.communicated['fixes'])}",
            ]
        )

    def clear_session(self, session_id: str) -> bool:
        """Delete a session; False when it did not exist."""
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SessionError(f"Could not delete session {session_id}: {e}") from e
        log.info("session_cleared", session_id=session_id)
        return True

    def list_sessions(self) -> list[str]:
        if not self._session_dir.is_dir():
            return []
        return sorted(path.stem for path in self._session_dir.glob("*.json"))

    def cleanup_old_sessions(self, max_age_hours: int | None = None) -> int:
        """Delete sessions idle for longer than ``max_age_hours`` (default: the TTL)."""
        max_age = self._ttl if max_age_hours is None else timedelta(hours=max_age_hours)
        cutoff = datetime.now(UTC) - max_age
        removed = 0
        for session_id in self.list_sessions():
            path = self._path(session_id)
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                last_updated = datetime.fromisoformat(data["last_updated"])
            except (OSError, ValueError, KeyError) as e:
                log.debug("session_cleanup_skipped", session_id=session_id, error=str(e))
                continue
            if last_updated < cutoff and self.clear_session(session_id):
                removed += 1
        return removed

    def current_session_id(self) -> str:
        """Session from the environment, else the ``current-session`` file.

        A new session is created and recorded as current when neither exists.
        """
        from_env = os.environ.get(self._env_var, "").strip()
        if from_env:
            self._validate(from_env)
            return from_env

        marker = self._cache_dir / CURRENT_SESSION_FILE
        if marker.is_file():
            recorded = marker.read_text(encoding="utf-8").strip()
            if recorded:
                self._validate(recorded)
                return recorded

        session_id = self.create_session()
        self.set_current_session(session_id)
        return session_id

    def set_current_session(self, session_id: str) -> None:
        self._validate(session_id)
        try:
            write_text(self._cache_dir / CURRENT_SESSION_FILE, session_id)
        except OSError as e:
            raise SessionError(f"Could not record current session: {e}") from e

    def _init_session(self, session_id: str) -> SessionContext:
        self._validate(session_id)
        now = _now()
        return SessionContext(session_id=session_id, created=now, last_updated=now)

    def _is_expired(self, session: SessionContext) -> bool:
        try:
            last_updated = datetime.fromisoformat(session.last_updated)
        except ValueError:
            return True
        return datetime.now(UTC) - last_updated > self._ttl

    def _save(self, session: SessionContext) -> None:
        try:
            write_text(self._path(session.session_id), json.dumps(session.to_dict(), indent=2))
        except OSError as e:
            raise SessionError(f"Could not save session {session.session_id}: {e}") from e

    def _path(self, session_id: str) -> Path:
        self._validate(session_id)
        return self._session_dir / f"{session_id}.json"

    @staticmethod
    def _validate(session_id: str) -> None:
        # ids become file names
        if not SESSION_ID_PATTERN.match(session_id):
            raise SessionError(f"Invalid session id: {session_id!r}")


def format_session_output(session_id: str, report: SessionAwareReport) -> str:
    """Compact JSON carrying only the new items."""
    if not report.is_new:
        return json.dumps({"unchanged": True, "session": session_id})

    output: dict[str, Any] = {"session": session_id, "new_only": report.new_only}
    if report.new_patterns:
        output["new_patterns"] = list(report.new_patterns)
    if report.new_root_causes:
        output["new_causes"] = list(report.new_root_causes)
    if report.new_fixes:
        output["new_fixes"] = list(report.new_fixes)
    if report.new_files:
        output["new_files"] = list(report.new_files)
    known = report.already_known
    if any(known.get(kind) for kind in ("patterns", "root_causes", "fixes")):
        output["known"] = {
            "patterns": len(known.get("patterns", ())),
            "causes": len(known.get("root_causes", ())),
            "fixes": len(known.get("fixes", ())),
        }
    return json.dumps(output, ensure_ascii=False)
