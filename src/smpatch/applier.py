"""Apply the SQL, folder and file operations of a patch manifest."""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Literal, Tuple

from .installation import InstallationStore
from .manifest import PatchManifest, PatchPackage
from .telemetry import emit_event

__all__ = ["ApplyReport", "ItemFailure", "PHASE_ORDER", "PatchApplier", "PhaseName"]

PhaseName = Literal["sql", "folders", "files"]
PHASE_ORDER: Tuple[PhaseName, ...] = ("sql", "folders", "files")
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """A single manifest item that could not be applied."""

    phase: PhaseName
    item: str
    error: str


@dataclass(slots=True)
class ApplyReport:
    """Structured summary of a patch application."""

    phases: List[PhaseName] = field(default_factory=list)
    applied: Dict[str, int] = field(default_factory=lambda: {phase: 0 for phase in PHASE_ORDER})
    failures: List[ItemFailure] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures

    def failures_for(self, phase: PhaseName) -> List[ItemFailure]:
        return [failure for failure in self.failures if failure.phase == phase]

    def record_failure(self, phase: PhaseName, item: str, error: object) -> None:
        self.failures.append(ItemFailure(phase=phase, item=item, error=str(error)))


def _native_relative(path: str) -> Path:
    """Translate a package path (``/`` separated) into a native relative path.

    A leading ``/`` is dropped so the path still lands under the root.
    """
    parts = PurePosixPath(path).parts
    if parts and parts[0] == "/":
        parts = parts[1:]
    return Path(*parts)


class PatchApplier:
    """Apply one manifest to one installation, tolerating per-item failures.

    Phases always run in the order SQL, folders, files so that folders exist
    before files are written into them. Nothing is rolled back.
    """

    def __init__(
        self,
        root: Path | str,
        store: InstallationStore,
        package: PatchPackage,
    ) -> None:
        self.root = Path(root)
        self.store = store
        self.package = package

    def apply(self, manifest: PatchManifest) -> ApplyReport:
        report = ApplyReport()
        self.apply_sql(manifest.sql, report)
        self.make_folders(manifest.folders, report)
        self.copy_files(manifest.files, report)
        return report

    def _resolve(self, relative: str) -> Path:
        # Lexical containment only; symlinks inside the root are written through.
        root = Path(os.path.normpath(self.root))
        target = Path(os.path.normpath(root / _native_relative(relative)))
        try:
            inside = target.relative_to(root)
        except ValueError:
            inside = None
        if inside is None or ".." in inside.parts:
            raise ValueError(f"{relative} escapes the installation root")
        return target

    def apply_sql(self, statements: List[str], report: ApplyReport) -> None:
        """Execute each statement in order; failures are logged and skipped."""
        report.phases.append("sql")
        if not statements:
            return
        LOGGER.info("Upgrading the database")
        for statement in statements:
            LOGGER.debug("Applying %s", statement)
            try:
                self.store.execute(statement)
            except sqlite3.Error as error:
                LOGGER.warning("*** %s ** FAILED ** %s", statement, error)
                report.record_failure("sql", statement, error)
                emit_event("patch.sql", statement=statement, ok=False, error=str(error))
                continue
            report.applied["sql"] += 1
            emit_event("patch.sql", statement=statement, ok=True)
        LOGGER.info("Database upgraded")

    def make_folders(self, folders: List[str], report: ApplyReport) -> None:
        report.phases.append("folders")
        for folder in folders:
            LOGGER.debug("Making folder %s", folder)
            try:
                target = self._resolve(folder)
                target.mkdir(parents=True, exist_ok=True)
            except (OSError, ValueError) as error:
                LOGGER.warning("*** %s ** FAILED ** %s", folder, error)
                report.record_failure("folders", folder, error)
                emit_event("patch.folder", folder=folder, ok=False, error=str(error))
                continue
            report.applied["folders"] += 1
            emit_event("patch.folder", folder=folder, path=target, ok=True)

    def copy_files(self, files: List[str], report: ApplyReport) -> None:
        """Copy package entries over installation files.

        Entries are stored flat in the package, keyed by base name, so
        ``sub/a.txt`` is read from the entry ``a.txt``. Parent folders must
        already exist.
        """
        report.phases.append("files")
        if not files:
            return
        LOGGER.info("Updating application files")
        for line in files:
            LOGGER.debug("Updating %s", line)
            try:
                destination = self._resolve(line)
            except ValueError as error:
                LOGGER.warning("*** Can't update %s [%s]", line, error)
                report.record_failure("files", line, error)
                emit_event("patch.file", file=line, ok=False, error=str(error))
                continue
            entry = _native_relative(line).name
            try:
                source = self.package.open_entry(entry)
            except KeyError as error:
                LOGGER.warning("*** Can't read patch %s [%s]", line, error)
                report.record_failure("files", line, f"no entry named {entry} in package")
                emit_event("patch.file", file=line, entry=entry, ok=False, error="missing entry")
                continue
            with source:
                LOGGER.debug("Writing %s", destination)
                try:
                    with destination.open("wb") as handle:
                        shutil.copyfileobj(source, handle)
                except (OSError, zipfile.BadZipFile) as error:
                    LOGGER.warning("*** Can't create file %s [%s]", destination, error)
                    report.record_failure("files", line, error)
                    emit_event("patch.file", file=line, entry=entry, ok=False, error=str(error))
                    continue
            report.applied["files"] += 1
            emit_event("patch.file", file=line, entry=entry, path=destination, ok=True)
        LOGGER.info("File patches applied")
