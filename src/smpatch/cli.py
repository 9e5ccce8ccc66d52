"""Command line entry point for applying patch packages."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from . import __version__
from .applier import ApplyReport
from .config import ConfigError, RunConfig, build_run_config, load_config_file
from .manifest import PatchManifest
from .runner import RunOutcome, check_patch, run_patch

APP_TITLE = "SMPatch"
APP_HELP = "I patch (upgrade) live ScoreMaster installations."

app = typer.Typer(help=APP_HELP)


class _EchoHandler(logging.Handler):
    """Send log records to stderr through ``typer.echo``."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            typer.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(config: RunConfig) -> None:
    """Attach a console handler at a level matching the verbosity flags."""
    if config.verbose:
        level = logging.DEBUG
    elif config.silent:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger = logging.getLogger("smpatch")
    for handler in list(logger.handlers):
        if isinstance(handler, _EchoHandler):
            logger.removeHandler(handler)
    handler = _EchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    telemetry_level = logging.INFO if config.verbose else logging.WARNING
    logging.getLogger("smpatch.telemetry").setLevel(telemetry_level)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{APP_TITLE} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """I patch (upgrade) live ScoreMaster installations."""


def _resolve_config(
    config_file: Optional[Path],
    *,
    install_root: Optional[Path],
    patch_file: Optional[Path],
    force: bool,
    verbose: bool,
    silent: bool,
    save: bool,
) -> RunConfig:
    file_values: Dict[str, Any] = {}
    # Flags can only switch a setting on; the config file supplies the rest.
    overrides: Dict[str, Any] = {
        "install_root": install_root,
        "patch_file": patch_file,
        "force": True if force else None,
        "verbose": True if verbose else None,
        "silent": True if silent else None,
        "keep_patch_file": True if save else None,
    }
    try:
        if config_file is not None:
            file_values = load_config_file(config_file)
        return build_run_config(file_values, overrides)
    except ConfigError as error:
        typer.echo(f"{APP_TITLE}: {error}", err=True)
        raise typer.Exit(code=1) from error


def _confirm_apply(manifest: PatchManifest) -> bool:
    accepted = typer.confirm("Ok to apply this patch", default=False)
    typer.echo(f"You chose {'Yes' if accepted else 'No'}")
    return accepted


def _render_report(report: ApplyReport) -> None:
    if report.clean:
        typer.echo("Patch applied successfully")
        return
    typer.echo(f"Patch applied with {len(report.failures)} item failure(s):")
    for failure in report.failures:
        typer.echo(f"  - [{failure.phase}] {failure.item}: {failure.error}")


def _finish(outcome: RunOutcome) -> None:
    if outcome.error is not None:
        typer.echo(f"{APP_TITLE}: {outcome.error} - run aborted", err=True)
    raise typer.Exit(code=outcome.exit_code)


def _banner(config: RunConfig) -> None:
    if not config.silent:
        typer.echo(f"{APP_TITLE}: v{__version__}\n{APP_HELP}\n")


_SM_OPTION = typer.Option(None, "--sm", help="Path of ScoreMaster root folder [default: .]")
_PF_OPTION = typer.Option(None, "--pf", help="File containing patches [default: smpatch.zip]")
_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Optional YAML file with run defaults.")


@app.command()
def apply(
    install_root: Optional[Path] = _SM_OPTION,
    patch_file: Optional[Path] = _PF_OPTION,
    force: bool = typer.Option(False, "--force", help="Apply patch regardless of criteria."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose."),
    silent: bool = typer.Option(False, "--silent", "-s", help="Silent; no prompts or banners."),
    save: bool = typer.Option(False, "--save", help="Don't delete the patchfile on completion."),
    config_file: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Apply a patch package to an installation."""
    config = _resolve_config(
        config_file,
        install_root=install_root,
        patch_file=patch_file,
        force=force,
        verbose=verbose,
        silent=silent,
        save=save,
    )
    _configure_logging(config)
    _banner(config)

    echo = None if config.silent else typer.echo
    confirm = None if config.silent else _confirm_apply
    outcome = run_patch(config, confirm=confirm, echo=echo)
    if outcome.report is not None:
        if not config.silent or not outcome.report.clean:
            _render_report(outcome.report)
    _finish(outcome)


@app.command()
def check(
    install_root: Optional[Path] = _SM_OPTION,
    patch_file: Optional[Path] = _PF_OPTION,
    force: bool = typer.Option(False, "--force", help="Report as if the patch were forced."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose."),
    config_file: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Report whether a patch package applies, without changing anything."""
    config = _resolve_config(
        config_file,
        install_root=install_root,
        patch_file=patch_file,
        force=force,
        verbose=verbose,
        silent=False,
        save=True,
    )
    _configure_logging(config)

    outcome = check_patch(config, echo=typer.echo)
    manifest = outcome.manifest
    if manifest is not None:
        app_target = manifest.app_target() or "any"
        typer.echo(f'Patch "{manifest.id}": DBVersion {manifest.schema_target()}; AppVersion {app_target}')
        typer.echo(
            f"Operations: {len(manifest.sql)} sql, "
            f"{len(manifest.folders)} folder(s), {len(manifest.files)} file(s)"
        )
    decision = outcome.decision
    if decision is not None and decision.approved:
        typer.echo(f"Patch applies: {decision.reason}")
        if decision.checks_skipped:
            typer.echo(f"Not checked: {', '.join(decision.checks_skipped)}")
    _finish(outcome)


if __name__ == "__main__":
    app()
