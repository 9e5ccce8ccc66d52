from __future__ import annotations

import sqlite3
import sys
import textwrap
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@dataclass(slots=True)
class FakeInstallation:
    """Fixture payload representing a ScoreMaster installation on disk."""

    root: Path
    db_path: Path
    about_path: Path

    def query(self, sql: str) -> list[tuple]:
        with sqlite3.connect(self.db_path) as connection:
            return connection.execute(sql).fetchall()


def build_installation(
    root: Path,
    *,
    schema_version: int = 5,
    app_version: str | None = "2.0",
    title: str = "Test Rally",
) -> FakeInstallation:
    sm_dir = root / "sm"
    sm_dir.mkdir(parents=True, exist_ok=True)
    db_path = sm_dir / "ScoreMaster.db"
    connection = sqlite3.connect(db_path)
    try:
        connection.execute("CREATE TABLE rallyparams (RallyTitle TEXT, DBVersion INTEGER, ebcsettings TEXT)")
        connection.execute(
            "INSERT INTO rallyparams (RallyTitle, DBVersion, ebcsettings) VALUES (?, ?, '')",
            (title, schema_version),
        )
        connection.commit()
    finally:
        connection.close()

    about_path = sm_dir / "about.php"
    if app_version is None:
        body = "<?php\n$HOME_URL = 'index.php';\n"
    else:
        body = textwrap.dedent(
            f"""
            <?php
            $ABOUT = [
                "name" => "ScoreMaster",
                "version" => "{app_version}",
                "copyright" => "Bob Stammers",
            ];
            """
        ).lstrip()
    about_path.write_text(body, encoding="utf-8")
    return FakeInstallation(root=root, db_path=db_path, about_path=about_path)


def build_package(
    path: Path,
    manifest: Mapping[str, object] | str | None,
    blobs: Mapping[str, bytes] | None = None,
) -> Path:
    """Write a patch zip with ``smpatch.yml`` and flat file entries."""
    with zipfile.ZipFile(path, "w") as archive:
        if manifest is not None:
            text = manifest if isinstance(manifest, str) else yaml.safe_dump(dict(manifest), sort_keys=False)
            archive.writestr("smpatch.yml", text)
        for name, data in (blobs or {}).items():
            archive.writestr(name, data)
    return path


@pytest.fixture()
def installation(tmp_path: Path) -> FakeInstallation:
    return build_installation(tmp_path / "scoremaster")


@pytest.fixture()
def sample_manifest() -> dict[str, object]:
    return {
        "id": "upgrade-2.1",
        "mindb": 4,
        "maxdb": 6,
        "minapp": "1.0",
        "maxapp": "3.0",
        "sql": [
            "CREATE TABLE bonuses (BonusID TEXT, Points INTEGER)",
            "UPDATE rallyparams SET DBVersion = 6",
        ],
        "folders": ["sm/images/bonuses"],
        "files": ["sm/images/bonuses/logo.png", "sm/about.php"],
    }


@pytest.fixture()
def make_installation(tmp_path: Path):
    def _factory(name: str = "scoremaster", **kwargs: object) -> FakeInstallation:
        return build_installation(tmp_path / name, **kwargs)  # type: ignore[arg-type]

    return _factory


@pytest.fixture()
def make_package(tmp_path: Path):
    def _factory(
        manifest: Mapping[str, object] | str | None,
        blobs: Mapping[str, bytes] | None = None,
        name: str = "smpatch.zip",
    ) -> Path:
        return build_package(tmp_path / name, manifest, blobs)

    return _factory
