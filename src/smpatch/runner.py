"""Top-level orchestration of a single patch run."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from .applier import ApplyReport, PatchApplier
from .config import RunConfig
from .errors import GateDenied, RunAbandoned, SMPatchError
from .gate import ApplicabilityDecision, evaluate
from .installation import InstallationState, InstallationStore, probe_installation
from .manifest import PatchManifest, PatchPackage
from .telemetry import emit_event

__all__ = ["RunOutcome", "check_patch", "open_patch_package", "run_patch"]

LOGGER = logging.getLogger(__name__)

ConfirmCallback = Callable[[PatchManifest], bool]
EchoCallback = Callable[[str], None]


@dataclass(slots=True)
class RunOutcome:
    """Everything a caller needs to report on a run."""

    exit_code: int = 1
    state: InstallationState | None = None
    manifest: PatchManifest | None = None
    decision: ApplicabilityDecision | None = None
    report: ApplyReport | None = None
    error: SMPatchError | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@contextmanager
def open_patch_package(path: Path, *, keep: bool) -> Iterator[PatchPackage]:
    """Open the package and release it on every exit path.

    Unless ``keep`` is set the package file is deleted once its handle has
    been closed, whatever the outcome of the run.
    """
    package = PatchPackage(path)
    try:
        yield package
    finally:
        package.close()
        removed = False
        if not keep:
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                pass
            except OSError as error:
                LOGGER.warning("Unable to delete patchfile %s: %s", path, error)
        emit_event("package.closed", path=path, deleted=removed)


def _noop(_: str) -> None:
    return None


def _execute(
    config: RunConfig,
    *,
    apply: bool,
    keep: bool,
    confirm: Optional[ConfirmCallback],
    echo: EchoCallback,
) -> RunOutcome:
    outcome = RunOutcome()
    root = config.install_root
    try:
        with open_patch_package(config.patch_file, keep=keep) as package:
            manifest = package.read_manifest()
            outcome.manifest = manifest
            with InstallationStore.for_installation(root) as store:
                state = probe_installation(root, store)
                outcome.state = state
                echo(
                    f'Patching "{state.rally_title}" ({root}) - '
                    f"DBVersion is {state.schema_version}; AppVersion is {state.app_version}"
                )

                decision = evaluate(state, manifest, force=config.force)
                outcome.decision = decision
                if not decision.approved:
                    raise GateDenied(decision)
                if decision.forced:
                    echo("Forcing patch application")
                if not apply:
                    outcome.exit_code = 0
                    return outcome

                echo(f'Applying patch "{manifest.id}"')
                if confirm is not None and not confirm(manifest):
                    raise RunAbandoned("Run abandoned")
                outcome.report = PatchApplier(root, store, package).apply(manifest)
    except SMPatchError as error:
        LOGGER.debug("Run aborted: %s", error, exc_info=True)
        outcome.error = error
        outcome.exit_code = 1
        return outcome

    outcome.exit_code = 0
    return outcome


def run_patch(
    config: RunConfig,
    *,
    confirm: Optional[ConfirmCallback] = None,
    echo: Optional[EchoCallback] = None,
) -> RunOutcome:
    """Check and apply the configured patch package to the installation.

    Fatal conditions are returned as ``RunOutcome.error`` with a non-zero exit
    code; per-item failures only appear in ``RunOutcome.report``.
    """
    return _execute(
        config,
        apply=True,
        keep=config.keep_patch_file,
        confirm=confirm,
        echo=echo or _noop,
    )


def check_patch(config: RunConfig, *, echo: Optional[EchoCallback] = None) -> RunOutcome:
    """Evaluate applicability without applying or deleting the package."""
    return _execute(config, apply=False, keep=True, confirm=None, echo=echo or _noop)
