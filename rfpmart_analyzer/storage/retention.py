"""
Retention of downloaded artifacts.

Each opportunity acquired in disk mode owns a directory under the data dir
named after its id. Cleanup removes artifacts either by age or by poor fit,
keeping report and metadata files. Deletion re-checks existence right before
removing each path, so files that vanish concurrently are not errors.
"""

import fnmatch
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..config import RetentionConfig
from ..exceptions import RetentionError

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """What a cleanup pass looked at and what it removed (or would remove)."""
    dry_run: bool = False
    examined: int = 0
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    freed_bytes: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "examined": self.examined,
            "deleted": list(self.deleted),
            "kept": list(self.kept),
            "freed_bytes": self.freed_bytes,
            "errors": list(self.errors),
        }


class RetentionManager:
    """Age- and fit-based cleanup of per-opportunity artifact directories."""

    def __init__(self, config: RetentionConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.data_dir = Path(config.data_dir)
        self.clock = clock

    def is_preserved(self, filename: str) -> bool:
        return any(fnmatch.fnmatch(filename, pattern) for pattern in self.config.preserved_files)

    def opportunity_dirs(self) -> List[Path]:
        if not self.data_dir.exists():
            return []
        if not self.data_dir.is_dir():
            raise RetentionError(f"Data directory is not a directory: {self.data_dir}", str(self.data_dir))
        return sorted(path for path in self.data_dir.iterdir() if path.is_dir())

    def _last_modified(self, directory: Path) -> float:
        newest = directory.stat().st_mtime
        for path in directory.rglob("*"):
            try:
                newest = max(newest, path.stat().st_mtime)
            except FileNotFoundError:
                continue
        return newest

    def _purge(self, directory: Path, dry_run: bool) -> int:
        """Remove every non-preserved file below ``directory``; returns bytes freed."""
        freed = 0
        for path in sorted(directory.rglob("*"), reverse=True):
            if path.is_dir() or self.is_preserved(path.name):
                continue
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            if dry_run:
                freed += size
                continue
            # Re-check immediately before deleting
            if not path.exists():
                continue
            try:
                path.unlink()
                freed += size
            except FileNotFoundError:
                logger.debug(f"{path} vanished before deletion")

        if not dry_run:
            for path in sorted(directory.rglob("*"), reverse=True):
                if path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
            if directory.exists() and not any(directory.iterdir()):
                directory.rmdir()
        return freed

    def _apply(self, report: CleanupReport, directory: Path, reason: str) -> None:
        try:
            freed = self._purge(directory, report.dry_run)
        except OSError as e:
            message = f"Failed to clean {directory.name}: {e}"
            logger.error(message)
            report.errors.append(message)
            return
        report.deleted.append(directory.name)
        report.freed_bytes += freed
        prefix = "DRY RUN: would clean" if report.dry_run else "Cleaned"
        logger.info(f"{prefix} {directory.name} ({reason}, {freed} bytes)")

    def cleanup_by_age(self, max_age_days: Optional[int] = None, dry_run: Optional[bool] = None) -> CleanupReport:
        """Remove artifacts of opportunities untouched for more than ``max_age_days``."""
        max_age_days = self.config.max_age_days if max_age_days is None else max_age_days
        report = CleanupReport(dry_run=self.config.dry_run if dry_run is None else dry_run)
        cutoff = self.clock() - max_age_days * 86400

        for directory in self.opportunity_dirs():
            report.examined += 1
            try:
                modified = self._last_modified(directory)
            except FileNotFoundError:
                continue
            if modified < cutoff:
                self._apply(report, directory, f"older than {max_age_days} days")
            else:
                report.kept.append(directory.name)

        logger.info(
            f"Age cleanup: {report.examined} examined, {len(report.deleted)} cleaned, "
            f"{len(report.kept)} kept, {report.freed_bytes} bytes"
        )
        return report

    def cleanup_by_fit(
        self,
        fit_lookup: Callable[[str], Optional[int]],
        threshold: Optional[int] = None,
        dry_run: Optional[bool] = None,
    ) -> CleanupReport:
        """
        Remove artifacts of opportunities scoring below ``threshold`` percent.

        Args:
            fit_lookup: Returns the stored percentage for an opportunity id, or
                None when it has not been scored. Unscored opportunities are kept.
        """
        threshold = self.config.fit_threshold if threshold is None else threshold
        report = CleanupReport(dry_run=self.config.dry_run if dry_run is None else dry_run)

        for directory in self.opportunity_dirs():
            report.examined += 1
            percentage = fit_lookup(directory.name)
            if percentage is not None and percentage < threshold:
                self._apply(report, directory, f"fit {percentage}% below {threshold}%")
            else:
                report.kept.append(directory.name)

        logger.info(
            f"Fit cleanup: {report.examined} examined, {len(report.deleted)} cleaned, "
            f"{len(report.kept)} kept, {report.freed_bytes} bytes"
        )
        return report
