"""Tolerant parsing and ordering of application version strings."""

from __future__ import annotations

import semver

__all__ = [
    "normalise_version",
    "parse_version",
    "try_parse_version",
]


def normalise_version(text: str) -> str:
    """Return ``text`` with internal spaces turned into pre-release separators.

    Installations report versions such as ``"3.2 beta"``; the hyphenated form
    ``"3.2-beta"`` reads as a semantic version pre-release.
    """
    value = str(text).strip().replace(" ", "-")
    if value[:1] in ("v", "V"):
        value = value[1:]
    return value


def parse_version(text: str) -> semver.Version:
    """Parse ``text`` as a semantic version, raising ``ValueError`` when malformed.

    Missing minor and patch numbers default to zero, so ``"2.0"`` equals
    ``"2.0.0"``.
    """
    return semver.Version.parse(normalise_version(text), optional_minor_and_patch=True)


def try_parse_version(text: str | None) -> semver.Version | None:
    """Parse ``text`` or return ``None`` when it is empty or malformed."""
    if text is None:
        return None
    try:
        return parse_version(text)
    except ValueError:
        return None
