"""Safe, reversible application of generated fixes.

A fix is only written when the file still holds exactly the text the fix was
generated from. Every write is preceded by a timestamped backup, and a
transaction restores all earlier writes as soon as one apply fails.
"""

from __future__ import annotations

import difflib
import shutil
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path

import structlog

from failure_triage.config.schema import PathsConfig
from failure_triage.models.fix import ApplyResult, BackupEntry, GeneratedFix, TransactionResult
from failure_triage.utils.fs import read_text, write_text

log = structlog.get_logger()

STALE_FIX_ERROR = "File has been modified since analysis"


class FixApplier:
    """Writes fixes to the source tree with backups and rollback.

    Example:
        applier = FixApplier(config.paths)
        result = applier.apply(fix, dry_run=True)
        print(result.preview)
    """

    def __init__(self, paths: PathsConfig, keep_backups: int = 10) -> None:
        self._root = paths.root
        self._backup_dir = paths.backup_path
        self._keep_backups = keep_backups

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def apply(self, fix: GeneratedFix, dry_run: bool = False, backup: bool = True) -> ApplyResult:
        """Apply one fix.

        Args:
            fix: Fix to write
            dry_run: Only compute a unified diff preview
            backup: Copy the current file into the backup directory first

        Returns:
            ApplyResult; failures carry the reason in ``error``
        """
        target = self._root / fix.file
        if not target.is_file():
            return self._failed(fix, "File not found", dry_run)

        current = read_text(target)
        if current is None:
            return self._failed(fix, "File could not be read", dry_run)
        if current != fix.original_content:
            return self._failed(fix, STALE_FIX_ERROR, dry_run)

        if dry_run:
            return ApplyResult(
                success=True,
                file=fix.file,
                dry_run=True,
                changes=len(fix.changes),
                preview=self.generate_diff(fix),
            )

        backup_path = None
        try:
            if backup:
                backup_path = self._create_backup(fix.file, current)
            write_text(target, fix.modified_content)
        except OSError as e:
            if backup_path is not None:
                self.restore(backup_path, target)
            return self._failed(fix, f"Write failed: {e}", dry_run)

        log.info(
            "fix_applied",
            file=fix.file,
            template=fix.template_id,
            changes=len(fix.changes),
            backup=backup_path,
        )
        return ApplyResult(
            success=True,
            file=fix.file,
            changes=len(fix.changes),
            backup_path=backup_path,
        )

    def apply_all(
        self, fixes: Iterable[GeneratedFix], dry_run: bool = False, backup: bool = True
    ) -> list[ApplyResult]:
        """Apply fixes independently; one failure does not stop the rest."""
        return [self.apply(fix, dry_run=dry_run, backup=backup) for fix in fixes]

    def apply_transaction(self, fixes: Sequence[GeneratedFix]) -> TransactionResult:
        """Apply fixes all-or-nothing.

        Backups are always taken. On the first failure every file written so
        far is restored from its backup.
        """
        results: list[ApplyResult] = []
        applied: list[tuple[str, str]] = []

        for fix in fixes:
            result = self.apply(fix, dry_run=False, backup=True)
            results.append(result)
            if result.success and result.backup_path:
                applied.append((result.backup_path, fix.file))
                continue
            if result.success:
                continue

            rolled_back = [
                file
                for backup_path, file in reversed(applied)
                if self.restore(backup_path, self._root / file)
            ]
            log.warning(
                "fix_transaction_rolled_back",
                failed_file=fix.file,
                error=result.error,
                restored=len(rolled_back),
            )
            return TransactionResult(
                success=False,
                results=tuple(results),
                rolled_back=tuple(rolled_back),
            )

        return TransactionResult(success=True, results=tuple(results))

    def restore(self, backup_path: str | Path, target: str | Path) -> bool:
        """Copy a backup over ``target``; False when the copy fails."""
        source = Path(backup_path)
        if not source.is_file():
            log.warning("backup_missing", backup=str(source))
            return False
        destination = Path(target)
        if not destination.is_absolute():
            destination = self._root / destination
        try:
            shutil.copyfile(source, destination)
        except OSError as e:
            log.error(
                "backup_restore_failed",
                backup=str(source),
                target=str(destination),
                error=str(e),
            )
            return False
        log.info("backup_restored", backup=str(source), target=str(destination))
        return True

    def list_backups(self) -> list[BackupEntry]:
        """Backups, newest first."""
        if not self._backup_dir.is_dir():
            return []
        entries = []
        for directory in self._backup_dir.iterdir():
            if not directory.is_dir():
                continue
            files = sorted(
                path.relative_to(directory).as_posix()
                for path in directory.rglob("*")
                if path.is_file()
            )
            entries.append(
                BackupEntry(path=str(directory), timestamp=directory.name, files=tuple(files))
            )
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries

    def restore_latest(self, target_file: str | None = None) -> list[str]:
        """Restore from the newest backup.

        Args:
            target_file: Restore only this repo-relative file, from the newest
                backup that contains it; every file of the newest backup when None

        Returns:
            Files restored
        """
        for entry in self.list_backups():
            if target_file is not None and target_file not in entry.files:
                continue
            wanted = [target_file] if target_file is not None else list(entry.files)
            return [
                file for file in wanted if self.restore(Path(entry.path) / file, self._root / file)
            ]
        return []

    def clean_old_backups(self, keep: int | None = None) -> int:
        """Delete all but the newest ``keep`` backups; returns how many went."""
        keep = self._keep_backups if keep is None else keep
        removed = 0
        for entry in self.list_backups()[keep:]:
            try:
                shutil.rmtree(entry.path)
            except OSError as e:
                log.warning("backup_cleanup_failed", backup=entry.path, error=str(e))
                continue
            removed += 1
        if removed:
            log.info("backups_cleaned", removed=removed, kept=keep)
        return removed

    @staticmethod
    def generate_diff(fix: GeneratedFix) -> str:
        """Unified diff between the fix's original and modified text."""
        return "".join(
            difflib.unified_diff(
                fix.original_content.splitlines(keepends=True),
                fix.modified_content.splitlines(keepends=True),
                fromfile=f"a/{fix.file}",
                tofile=f"b/{fix.file}",
            )
        )

    @staticmethod
    def format_results(results: Iterable[ApplyResult]) -> str:
        """``APPLIED:n|FAILED:n|DRY:n``."""
        results = list(results)
        applied = sum(1 for r in results if r.success and not r.dry_run)
        failed = sum(1 for r in results if not r.success)
        dry = sum(1 for r in results if r.success and r.dry_run)
        return f"APPLIED:{applied}|FAILED:{failed}|DRY:{dry}"

    def _create_backup(self, file: str, content: str) -> str:
        stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        path = self._backup_dir / stamp / file
        write_text(path, content)
        return str(path)

    @staticmethod
    def _failed(fix: GeneratedFix, error: str, dry_run: bool) -> ApplyResult:
        log.warning("fix_apply_failed", file=fix.file, template=fix.template_id, error=error)
        return ApplyResult(success=False, file=fix.file, dry_run=dry_run, error=error)
