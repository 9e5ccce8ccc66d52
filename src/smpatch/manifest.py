"""Patch package access and manifest decoding."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import IO, Any, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ManifestError, PackageError
from .versioning import try_parse_version

__all__ = [
    "MANIFEST_ENTRY",
    "PatchManifest",
    "PatchPackage",
    "decode_manifest",
]

MANIFEST_ENTRY = "smpatch.yml"
LOGGER = logging.getLogger(__name__)


# BaseLoader hands YAML nulls over as their literal spellings.
_NULL_SCALARS = frozenset({"", "~", "null", "Null", "NULL"})


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value in _NULL_SCALARS)


def _range_label(low: Any, high: Any, *, prefix: str = "") -> str:
    if low == high:
        return f"{low}"
    return f"{prefix}{low}-{high}"


class PatchManifest(BaseModel):
    """Applicability bounds and operations declared by a patch package."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = ""
    mindb: int = 0
    maxdb: int = 0
    minapp: str = ""
    maxapp: str = ""
    files: List[str] = Field(default_factory=list)
    sql: List[str] = Field(default_factory=list)
    folders: List[str] = Field(default_factory=list)

    @field_validator("files", "sql", "folders", mode="before")
    @classmethod
    def _empty_list(cls, value: Any) -> Any:
        if _is_null(value):
            return []
        return value

    @field_validator("mindb", "maxdb", mode="before")
    @classmethod
    def _empty_int(cls, value: Any) -> Any:
        if _is_null(value):
            return 0
        return value

    @field_validator("id", "minapp", "maxapp", mode="before")
    @classmethod
    def _empty_str(cls, value: Any) -> Any:
        if _is_null(value):
            return ""
        return value

    @model_validator(mode="after")
    def _check_bounds(self) -> "PatchManifest":
        if self.mindb < 0 or self.maxdb < 0:
            raise ValueError("schema version bounds must not be negative")
        if self.mindb > self.maxdb:
            raise ValueError(f"mindb ({self.mindb}) is greater than maxdb ({self.maxdb})")
        low = try_parse_version(self.minapp)
        high = try_parse_version(self.maxapp)
        if low is not None and high is not None and low > high:
            raise ValueError(f"minapp ({self.minapp}) is newer than maxapp ({self.maxapp})")
        return self

    def schema_target(self) -> str:
        """Describe the accepted schema versions, e.g. ``5`` or ``in range 4-6``."""
        return _range_label(self.mindb, self.maxdb, prefix="in range ")

    def app_target(self) -> str:
        """Describe the accepted application versions, e.g. ``2.0`` or ``1.0-3.0``."""
        return _range_label(self.minapp, self.maxapp)


def decode_manifest(text: str) -> PatchManifest:
    """Decode manifest YAML into a validated ``PatchManifest``."""
    try:
        # Scalars stay verbatim so versions such as 2.10 are not read as floats.
        payload = yaml.load(text, Loader=yaml.BaseLoader)
    except yaml.YAMLError as error:
        raise ManifestError(f"Patch manifest is not valid YAML: {error}") from error
    if payload is None or payload == "":
        raise ManifestError("Patch manifest is empty")
    if not isinstance(payload, dict):
        raise ManifestError("Patch manifest must be a mapping at the top level")
    try:
        return PatchManifest.model_validate(payload)
    except ValidationError as error:
        raise ManifestError(
            f"Patch manifest is malformed: {error}",
            details={"errors": error.errors(include_url=False)},
        ) from error


class PatchPackage:
    """Read-only view over a zipped patch package."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        try:
            self._archive: zipfile.ZipFile | None = zipfile.ZipFile(self.path)
        except (OSError, zipfile.BadZipFile) as error:
            raise PackageError(
                f"Can't access patchfile {self.path} [{error}]",
                details={"path": self.path.as_posix()},
            ) from error

    def __enter__(self) -> "PatchPackage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._archive is None

    def close(self) -> None:
        if self._archive is not None:
            try:
                self._archive.close()
            finally:
                self._archive = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._archive is None:
            raise PackageError(f"Patchfile {self.path} is closed")
        return self._archive

    def open_entry(self, name: str) -> IO[bytes]:
        """Open a named entry for reading; raises ``KeyError`` when absent."""
        return self._require_open().open(name)

    def read_manifest(self) -> PatchManifest:
        """Locate and decode the manifest entry."""
        archive = self._require_open()
        try:
            raw = archive.read(MANIFEST_ENTRY)
        except KeyError as error:
            raise ManifestError(
                f"Patchfile {self.path} is malformed: no {MANIFEST_ENTRY} entry",
                details={"path": self.path.as_posix()},
            ) from error
        text = raw.decode("utf-8-sig", errors="replace")
        manifest = decode_manifest(text)
        LOGGER.debug(
            "Loaded manifest %r: %d sql, %d folder(s), %d file(s)",
            manifest.id,
            len(manifest.sql),
            len(manifest.folders),
            len(manifest.files),
        )
        return manifest
