"""SMPatch: apply versioned upgrade packages to live ScoreMaster installations."""

from .applier import ApplyReport, ItemFailure, PatchApplier
from .config import RunConfig
from .errors import GateDenied, ManifestError, PackageError, ProbeError, RunAbandoned, SMPatchError
from .gate import ApplicabilityDecision, evaluate
from .installation import InstallationState, InstallationStore, probe_installation
from .manifest import PatchManifest, PatchPackage
from .runner import RunOutcome, check_patch, run_patch

__version__ = "1.1.0"

__all__ = [
    "ApplicabilityDecision",
    "ApplyReport",
    "GateDenied",
    "InstallationState",
    "InstallationStore",
    "ItemFailure",
    "ManifestError",
    "PackageError",
    "PatchApplier",
    "PatchManifest",
    "PatchPackage",
    "ProbeError",
    "RunAbandoned",
    "RunConfig",
    "RunOutcome",
    "SMPatchError",
    "check_patch",
    "evaluate",
    "probe_installation",
    "run_patch",
]
