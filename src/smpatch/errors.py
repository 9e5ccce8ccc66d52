"""Fatal error types raised while preparing or applying a patch."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from .gate import ApplicabilityDecision

__all__ = [
    "GateDenied",
    "ManifestError",
    "PackageError",
    "ProbeError",
    "RunAbandoned",
    "SMPatchError",
]


class SMPatchError(RuntimeError):
    """Base class for conditions that abort a patch run."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class PackageError(SMPatchError):
    """Raised when the patch package cannot be opened."""


class ManifestError(SMPatchError):
    """Raised when the patch manifest is missing or malformed."""


class ProbeError(SMPatchError):
    """Raised when the installation state cannot be determined."""


class GateDenied(SMPatchError):
    """Raised when the patch does not apply to the installation."""

    def __init__(self, decision: "ApplicabilityDecision") -> None:
        super().__init__(decision.reason, details={"checks_skipped": list(decision.checks_skipped)})
        self.decision = decision


class RunAbandoned(SMPatchError):
    """Raised when the operator declines to apply the patch."""
