"""Access to a host installation's embedded store and version descriptor."""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from .errors import ProbeError

__all__ = [
    "DB_RELATIVE_PATH",
    "DESCRIPTOR_RELATIVE_PATH",
    "InstallationState",
    "InstallationStore",
    "probe_installation",
    "read_app_version",
]

DB_RELATIVE_PATH = Path("sm") / "ScoreMaster.db"
DESCRIPTOR_RELATIVE_PATH = Path("sm") / "about.php"
_VERSION_MARKER = re.compile(r'"version"\s*=>\s*"(?P<version>[^"]+)')
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InstallationState:
    """Snapshot of the installation taken once at the start of a run."""

    root: Path
    rally_title: str
    schema_version: int
    app_version: str


class InstallationStore:
    """SQLite connection to an existing installation database.

    The connection runs in autocommit mode: every statement stands on its own,
    so a failing statement never rolls back the ones before it.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        if not self.db_path.is_file():
            raise ProbeError(
                f"Cannot access database {self.db_path}",
                details={"path": self.db_path.as_posix()},
            )
        try:
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                f"{self.db_path.resolve().as_uri()}?mode=rw",
                uri=True,
                isolation_level=None,
            )
        except sqlite3.Error as error:
            raise ProbeError(f"Can't access database {self.db_path} [{error}]") from error

    @classmethod
    def for_installation(cls, root: Path | str) -> "InstallationStore":
        return cls(Path(root) / DB_RELATIVE_PATH)

    def __enter__(self) -> "InstallationStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ProbeError(f"Database {self.db_path} is closed")
        return self._conn

    def read_rally_params(self) -> tuple[str, int]:
        """Return the rally title and schema version from ``rallyparams``."""
        try:
            row = self._connection().execute(
                "SELECT RallyTitle, DBVersion FROM rallyparams"
            ).fetchone()
        except sqlite3.Error as error:
            raise ProbeError(f"Can't fetch rally parameters from {self.db_path} [{error}]") from error
        if row is None:
            raise ProbeError(f"Database {self.db_path} has no rallyparams row")
        title, version = row
        try:
            schema_version = int(version)
        except (TypeError, ValueError) as error:
            raise ProbeError(f"DBVersion {version!r} in {self.db_path} is not an integer") from error
        if schema_version < 0:
            raise ProbeError(f"DBVersion {schema_version} in {self.db_path} is negative")
        return str(title or ""), schema_version

    def execute(self, statement: str) -> None:
        """Run one manifest SQL entry; it may hold several ``;``-separated statements."""
        self._connection().executescript(statement)


def read_app_version(descriptor: Path) -> str:
    """Extract the application version from the installation descriptor."""
    if not descriptor.is_file():
        raise ProbeError(
            f"Can't access {descriptor}",
            details={"path": descriptor.as_posix()},
        )
    try:
        text = descriptor.read_text(encoding="utf-8", errors="replace")
    except OSError as error:
        raise ProbeError(f"Can't read {descriptor} [{error}]") from error
    match = _VERSION_MARKER.search(text)
    if match is None:
        raise ProbeError(
            f"Version marker not found in {descriptor}",
            details={"path": descriptor.as_posix()},
        )
    return match.group("version")


def probe_installation(root: Path | str, store: InstallationStore) -> InstallationState:
    """Gather the schema and application versions of the installation at ``root``."""
    root_path = Path(root)
    title, schema_version = store.read_rally_params()
    app_version = read_app_version(root_path / DESCRIPTOR_RELATIVE_PATH)
    LOGGER.debug("Installation %s: DBVersion %s, AppVersion %s", root_path, schema_version, app_version)
    return InstallationState(
        root=root_path,
        rally_title=title,
        schema_version=schema_version,
        app_version=app_version,
    )
