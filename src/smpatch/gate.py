"""Decide whether a patch applies to an installation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from .installation import InstallationState
from .manifest import PatchManifest
from .telemetry import emit_event
from .versioning import try_parse_version

__all__ = ["ApplicabilityDecision", "evaluate"]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApplicabilityDecision:
    """Outcome of the applicability checks."""

    approved: bool
    reason: str
    forced: bool = False
    checks_skipped: Tuple[str, ...] = ()


def _check_schema(state: InstallationState, manifest: PatchManifest) -> str | None:
    if manifest.mindb <= state.schema_version <= manifest.maxdb:
        return None
    return f"DBVersion is not {manifest.schema_target()}"


def _check_app(state: InstallationState, manifest: PatchManifest) -> tuple[str | None, tuple[str, ...]]:
    current = try_parse_version(state.app_version)
    if current is None:
        LOGGER.info("AppVersion %r cannot be parsed; skipping application version check", state.app_version)
        return None, ("app_version",)

    skipped: list[str] = []
    low = try_parse_version(manifest.minapp)
    high = try_parse_version(manifest.maxapp)
    LOGGER.debug(
        "Vapp is %s [%s], Vmin is %s [%s], Vmax is %s [%s]",
        current,
        state.app_version,
        low,
        manifest.minapp,
        high,
        manifest.maxapp,
    )
    if low is None:
        skipped.append("minapp")
    elif current < low:
        return f"AppVersion is older than {manifest.app_target()}", tuple(skipped)
    if high is None:
        skipped.append("maxapp")
    elif current > high:
        return f"AppVersion is newer than {manifest.app_target()}", tuple(skipped)
    return None, tuple(skipped)


def evaluate(
    state: InstallationState,
    manifest: PatchManifest,
    *,
    force: bool = False,
) -> ApplicabilityDecision:
    """Check the installation against the manifest bounds.

    Force mode approves without evaluating anything. Otherwise the schema
    version must fall inside ``[mindb, maxdb]``; the application version check
    then enforces each bound that parses and is skipped entirely when the
    installation's own version does not parse.
    """
    if force:
        decision = ApplicabilityDecision(approved=True, reason="Forcing patch application", forced=True)
    else:
        denial = _check_schema(state, manifest)
        skipped: tuple[str, ...] = ()
        if denial is None:
            denial, skipped = _check_app(state, manifest)
        if denial is None:
            decision = ApplicabilityDecision(
                approved=True,
                reason=f"DBVersion {state.schema_version} and AppVersion {state.app_version} are supported",
                checks_skipped=skipped,
            )
        else:
            decision = ApplicabilityDecision(approved=False, reason=denial, checks_skipped=skipped)

    emit_event(
        "gate.decision",
        patch_id=manifest.id,
        approved=decision.approved,
        forced=decision.forced,
        reason=decision.reason,
        schema_version=state.schema_version,
        app_version=state.app_version,
        checks_skipped=decision.checks_skipped,
    )
    return decision
