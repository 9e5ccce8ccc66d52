from __future__ import annotations

from pathlib import Path

import pytest

from smpatch.applier import PatchApplier
from smpatch.config import RunConfig
from smpatch.errors import GateDenied, ManifestError, PackageError, ProbeError, RunAbandoned
from smpatch.manifest import PatchPackage
from smpatch.runner import check_patch, open_patch_package, run_patch


def _config(installation, package: Path, **kwargs: object) -> RunConfig:
    return RunConfig(install_root=installation.root, patch_file=package, **kwargs)


@pytest.fixture()
def close_tracker(monkeypatch):
    closed: list[Path] = []
    original_close = PatchPackage.close

    def _close(self) -> None:
        if not self.closed:
            closed.append(self.path)
        original_close(self)

    monkeypatch.setattr(PatchPackage, "close", _close)
    return closed


def test_compatible_patch_is_applied_and_package_deleted(
    installation, make_package, sample_manifest, close_tracker
) -> None:
    package = make_package(sample_manifest, {"logo.png": b"\x89PNG", "about.php": b'"version" => "2.1"'})
    messages: list[str] = []

    outcome = run_patch(_config(installation, package), echo=messages.append)

    assert outcome.ok
    assert outcome.error is None
    assert outcome.decision is not None and outcome.decision.approved
    assert outcome.report is not None and outcome.report.clean
    assert outcome.report.phases == ["sql", "folders", "files"]
    assert installation.query("SELECT DBVersion FROM rallyparams") == [(6,)]
    assert (installation.root / "sm" / "images" / "bonuses" / "logo.png").read_bytes() == b"\x89PNG"
    assert close_tracker == [package]
    assert not package.exists()
    assert any("DBVersion is 5; AppVersion is 2.0" in message for message in messages)


def test_schema_out_of_range_denies_and_applies_nothing(
    make_installation, make_package, sample_manifest, close_tracker
) -> None:
    installation = make_installation(schema_version=7)
    package = make_package(sample_manifest, {"logo.png": b"x", "about.php": b"y"})
    applied: list[object] = []

    outcome = run_patch(
        _config(installation, package, keep_patch_file=True),
        confirm=lambda manifest: applied.append(manifest) or True,
    )

    assert outcome.exit_code == 1
    assert isinstance(outcome.error, GateDenied)
    assert "not in range 4-6" in str(outcome.error)
    assert outcome.report is None
    assert applied == []
    assert not (installation.root / "sm" / "images").exists()
    assert installation.query("SELECT DBVersion FROM rallyparams") == [(7,)]
    assert close_tracker == [package]
    assert package.exists()


def test_force_bypasses_checks(make_installation, make_package, sample_manifest) -> None:
    installation = make_installation(schema_version=7, app_version="9.9")
    package = make_package(sample_manifest, {"logo.png": b"x", "about.php": b"y"})

    outcome = run_patch(_config(installation, package, force=True))

    assert outcome.ok
    assert outcome.decision is not None and outcome.decision.forced
    assert (installation.root / "sm" / "images" / "bonuses" / "logo.png").exists()


def test_item_failures_still_exit_zero(installation, make_package) -> None:
    package = make_package({"mindb": 5, "maxdb": 5, "sql": ["BROKEN SQL"], "files": ["gone.txt"]})

    outcome = run_patch(_config(installation, package))

    assert outcome.exit_code == 0
    assert outcome.report is not None
    assert len(outcome.report.failures) == 2


def test_declined_confirmation_abandons_run(installation, make_package, sample_manifest, close_tracker) -> None:
    package = make_package(sample_manifest)

    outcome = run_patch(_config(installation, package), confirm=lambda manifest: False)

    assert isinstance(outcome.error, RunAbandoned)
    assert outcome.exit_code == 1
    assert outcome.report is None
    assert installation.query("SELECT DBVersion FROM rallyparams") == [(5,)]
    assert close_tracker == [package]


def test_probe_failure_releases_package(installation, make_package, sample_manifest, close_tracker) -> None:
    installation.about_path.unlink()
    package = make_package(sample_manifest)

    outcome = run_patch(_config(installation, package, keep_patch_file=True))

    assert isinstance(outcome.error, ProbeError)
    assert outcome.exit_code == 1
    assert close_tracker == [package]


def test_malformed_package_is_fatal(installation, make_package, close_tracker) -> None:
    package = make_package(None, {"a.txt": b"a"})

    outcome = run_patch(_config(installation, package))

    assert isinstance(outcome.error, ManifestError)
    assert outcome.exit_code == 1
    assert close_tracker == [package]
    assert not package.exists()


def test_missing_package_is_fatal(installation, tmp_path: Path) -> None:
    outcome = run_patch(_config(installation, tmp_path / "absent.zip"))

    assert isinstance(outcome.error, PackageError)
    assert outcome.exit_code == 1


def test_check_patch_never_applies_or_deletes(installation, make_package, sample_manifest, monkeypatch) -> None:
    package = make_package(sample_manifest)

    def _fail(self, manifest):
        raise AssertionError("check must not apply")

    monkeypatch.setattr(PatchApplier, "apply", _fail)

    outcome = check_patch(_config(installation, package))

    assert outcome.ok
    assert outcome.decision is not None and outcome.decision.approved
    assert package.exists()


def test_open_patch_package_releases_on_error(make_package) -> None:
    package_path = make_package({"id": "x"})

    with pytest.raises(RuntimeError):
        with open_patch_package(package_path, keep=False) as package:
            raise RuntimeError("boom")

    assert package.closed
    assert not package_path.exists()
