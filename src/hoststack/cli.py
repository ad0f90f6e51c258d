"""Typer-powered command line interface for ``hoststack``.

``hoststack deploy`` walks every enabled service group: it checks the group's
external resources, then deploys each unit that does not exist yet. Helper
commands list groups, render a single unit's artifact for inspection and show
the effective configuration.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .context import (
    LAYER_SECRETS,
    ConfigurationSource,
    defaults_source,
    environment_source,
    overrides_source,
    resolve,
    secret_store_source,
)
from .deploy import (
    DeployImpact,
    DeploymentReport,
    GroupState,
    UnitState,
    run_deployment,
    serialize_report,
)
from .errors import DeploymentError
from .exit_codes import ExitCode
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger, setup_cli_logging
from .providers import DockerExecutor
from .stack import Stack, StackError, load_stack
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to hoststack's YAML config file.",
)

SET_OPTION = typer.Option(
    None,
    "--set",
    metavar="KEY=VALUE",
    help="Override a service variable for this run (repeatable).",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)

DEPLOY_ENABLE_OPTION = typer.Option(
    None,
    "--enable",
    metavar="GROUP",
    help="Enable a service group for this run (repeatable).",
)
DEPLOY_DISABLE_OPTION = typer.Option(
    None,
    "--disable",
    metavar="GROUP",
    help="Disable a service group for this run (repeatable).",
)
DEPLOY_DEBUG_OPTION = typer.Option(
    None,
    "--debug/--no-debug",
    help="Write each rendered artifact to the debug directory before applying.",
)
DEPLOY_DEBUG_DIR_OPTION = typer.Option(
    None,
    "--debug-dir",
    dir_okay=True,
    file_okay=False,
    help="Directory receiving debug artifacts (overrides configuration).",
)
DEPLOY_DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Probe resources and units but do not start any container.",
)
DEPLOY_MAX_CONCURRENCY_OPTION = typer.Option(
    1,
    "--max-concurrency",
    min=1,
    help="Number of service groups deployed in parallel.",
)

_UNIT_STATE_STYLE = {
    UnitState.APPLIED: "[green]APPLIED[/green]",
    UnitState.SKIPPED: "[cyan]SKIPPED[/cyan]",
    UnitState.RENDER_FAILED: "[red]RENDER_FAILED[/red]",
    UnitState.APPLY_FAILED: "[red]APPLY_FAILED[/red]",
    UnitState.PROBE_FAILED: "[red]PROBE_FAILED[/red]",
}
_GROUP_STATE_STYLE = {
    GroupState.PROCESSED: "[green]PROCESSED[/green]",
    GroupState.SKIPPED_PRECONDITION: "[yellow]SKIPPED_PRECONDITION[/yellow]",
    GroupState.SKIPPED_CONFIGURATION: "[red]SKIPPED_CONFIGURATION[/red]",
    GroupState.DISABLED: "[dim]DISABLED[/dim]",
}
_DEPLOY_IMPACT_MESSAGES = {
    DeployImpact.OK: "Deployment completed successfully.",
    DeployImpact.VALIDATION: "Deployment finished with configuration or rendering errors.",
    DeployImpact.ENVIRONMENT: "Deployment skipped groups with missing resources.",
    DeployImpact.PROVIDER: "Deployment finished with executor failures.",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Declarative orchestrator for containerised service groups on one host.

        Each enabled group is checked for its external resources, then every
        unit that is not already present is rendered and started.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration and variables.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Objects shared by every command of one CLI invocation."""

    config: AppConfig
    stack: Stack
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
        stack = load_stack(config.stack_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]", soft_wrap=True)
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        stack=stack,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the hoststack version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show diagnostic log output on stderr.",
    ),
) -> None:
    """Set up logging and handle ``--version`` before any command runs."""
    setup_cli_logging(verbose=verbose)
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"hoststack {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]", soft_wrap=True)
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _variable_layers(
    runtime: RuntimeContext,
    assignments: Sequence[str],
) -> list[ConfigurationSource]:
    """Build the variable layers, lowest precedence first."""
    return [
        defaults_source(runtime.stack.variables),
        environment_source(),
        secret_store_source(runtime.config.secrets_file),
        overrides_source(assignments),
    ]


def _render_deploy_report(report: DeploymentReport) -> None:
    """Render a deployment report in a human-friendly format."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Group", style="bold")
    table.add_column("Unit")
    table.add_column("State")
    table.add_column("Detail", overflow="fold")

    for group in report.groups:
        if group.state is not GroupState.PROCESSED:
            detail = escape(str(group.error)) if group.error is not None else ""
            table.add_row(group.group, "-", _GROUP_STATE_STYLE[group.state], detail)
            continue
        for unit in group.units:
            notes: list[str] = []
            if unit.error is not None:
                notes.append(str(unit.error))
            if unit.debug_artifact is not None:
                notes.append(f"debug: {unit.debug_artifact}")
            notes.extend(unit.warnings)
            table.add_row(
                group.group,
                unit.unit,
                _UNIT_STATE_STYLE[unit.state],
                escape("\n".join(notes)),
            )
    console.print(table)

    summary = report.summary
    totals = ", ".join(
        f"{state.value}={summary.unit_totals.get(state, 0)}"
        for state in UnitState
        if summary.unit_totals.get(state, 0)
    )
    console.print(
        f"Units: {totals or 'none'} "
        f"(impact={summary.impact.name.lower()}, exit={summary.exit_code})"
    )


def _record_report_steps(op: OperationScope, report: DeploymentReport) -> None:
    for group in report.groups:
        if group.state is not GroupState.PROCESSED:
            op.add_step(
                f"group:{group.group}",
                status=group.state.value,
                detail=group.error.to_dict() if group.error is not None else None,
            )
            continue
        for unit in group.units:
            op.add_step(
                f"unit:{group.group}/{unit.unit}",
                status=unit.state.value,
                detail=unit.error.to_dict() if unit.error is not None else None,
            )


def _failed_identifiers(report: DeploymentReport) -> list[str]:
    failed: list[str] = []
    for group in report.groups:
        if group.error is not None:
            failed.append(f"group:{group.group}: {group.error}")
        for unit in group.units:
            if unit.is_failure:
                failed.append(f"unit:{unit.unit}: {unit.error}")
    return failed


@app.command()
def deploy(
    ctx: typer.Context,
    enable: list[str] | None = DEPLOY_ENABLE_OPTION,
    disable: list[str] | None = DEPLOY_DISABLE_OPTION,
    debug: bool | None = DEPLOY_DEBUG_OPTION,
    debug_dir: Path | None = DEPLOY_DEBUG_DIR_OPTION,
    assignments: list[str] | None = SET_OPTION,
    dry_run: bool = DEPLOY_DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    max_concurrency: int = DEPLOY_MAX_CONCURRENCY_OPTION,
) -> None:
    """Deploy every enabled service group, skipping units that already exist."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    effective_debug = config.debug if debug is None else debug
    effective_debug_dir = debug_dir or config.debug_dir

    with runtime.logger.operation(
        "deploy",
        args={
            "enable": list(enable or []),
            "disable": list(disable or []),
            "debug": effective_debug,
            "debug_dir": effective_debug_dir,
            "set": sorted(item.partition("=")[0] for item in assignments or []),
            "dry_run": dry_run,
            "json": json_output,
            "max_concurrency": max_concurrency,
        },
        target={"kind": "stack", "scope": "deploy"},
    ) as op:
        try:
            stack = runtime.stack.with_toggles(
                config.groups,
                enable=enable or (),
                disable=disable or (),
            )
            layers = _variable_layers(runtime, assignments or [])
        except ConfigError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        executor = DockerExecutor(
            docker_bin=config.docker.bin,
            timeout=config.docker.timeout,
            dry_run=dry_run,
        )
        try:
            with runtime.locks.deploy_lock() as handle:
                op.add_step(
                    "lock",
                    status="acquired",
                    detail={"path": str(handle.path), "wait_ms": handle.wait_ms},
                )
                report = run_deployment(
                    stack,
                    layers,
                    executor=executor,
                    templates=runtime.templates,
                    debug=effective_debug,
                    debug_dir=effective_debug_dir,
                    max_concurrency=max_concurrency,
                    metadata={"dry_run": dry_run, "debug": effective_debug},
                )
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        except ConfigError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        _record_report_steps(op, report)
        payload = serialize_report(report)
        summary = report.summary

        if json_output:
            console.print_json(data=payload)
        else:
            if dry_run:
                console.print("[yellow]Dry run[/yellow]: no containers were started.")
            _render_deploy_report(report)

        impact_message = _DEPLOY_IMPACT_MESSAGES[summary.impact]
        applied = summary.unit_totals.get(UnitState.APPLIED, 0)
        log_context = {"report": payload}
        if summary.exit_code == 0:
            if not json_output:
                console.print(f"[green]{impact_message}[/green]")
            op.success(
                impact_message,
                changed=0 if dry_run else applied,
                context=log_context,
            )
            return

        if not json_output:
            console.print(f"[red]{impact_message}[/red]")
        op.error(
            impact_message,
            rc=summary.exit_code,
            errors=_failed_identifiers(report),
            changed=0 if dry_run else applied,
            context=log_context,
        )
        raise typer.Exit(code=summary.exit_code)


@app.command("groups")
def groups_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List service groups with their effective enable flag."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "groups",
        args={"json": json_output},
        target={"kind": "stack", "scope": "groups"},
    ) as op:
        try:
            stack = runtime.stack.with_toggles(runtime.config.groups)
        except StackError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        if json_output:
            console.print_json(data=[group.to_dict() for group in stack])
            op.success("Listed service groups as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Group", style="bold")
        table.add_column("Enabled")
        table.add_column("Resources")
        table.add_column("Units")
        for group in stack:
            table.add_row(
                group.name,
                "[green]yes[/green]" if group.enabled else "[dim]no[/dim]",
                ", ".join(f"{res.kind}:{res.name}" for res in group.resources) or "-",
                ", ".join(unit.name for unit in group.units),
            )
        console.print(table)
        op.success("Listed service groups.", changed=0)


@app.command()
def render(
    ctx: typer.Context,
    unit_name: str = typer.Argument(..., metavar="UNIT", help="Unit to render."),
    assignments: list[str] | None = SET_OPTION,
) -> None:
    """Print the rendered artifact for one unit without contacting Docker."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "render",
        args={"set": sorted(item.partition("=")[0] for item in assignments or [])},
        target={"kind": "unit", "name": unit_name},
    ) as op:
        found = runtime.stack.find_unit(unit_name)
        if found is None:
            available = ", ".join(
                unit.name for group in runtime.stack for unit in group.units
            )
            _command_error(
                op,
                f"Unknown unit '{unit_name}'. Available units: {available or 'none'}.",
                rc=ExitCode.VALIDATION,
            )
        group, unit = found
        try:
            context = resolve(
                _variable_layers(runtime, assignments or []),
                required=unit.variables,
            )
            artifact = runtime.templates.render_artifact(
                unit.template, context.subset(unit.variables)
            )
        except ConfigError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except DeploymentError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        typer.echo(artifact, nl=not artifact.endswith("\n"))
        op.success(
            f"Rendered unit '{unit_name}'.",
            changed=0,
            context={"group": group.name, "template": unit.template},
        )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = "-" if value is None else str(value)
            table.add_row(key, escape(rendered))
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@config_app.command("vars")
def config_vars(
    ctx: typer.Context,
    assignments: list[str] | None = SET_OPTION,
    show_secrets: bool = typer.Option(
        False,
        "--show-secrets",
        help="Show values from the secret store instead of redacting them.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Display resolved service variables and the layer supplying each."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config vars",
        args={"show_secrets": show_secrets, "json": json_output},
        target={"kind": "variables"},
    ) as op:
        try:
            context = resolve(_variable_layers(runtime, assignments or []))
        except ConfigError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        values = context.to_dict(redact=not show_secrets)
        if json_output:
            payload: dict[str, Mapping[str, object]] = {
                key: {"value": value, "source": context.source_of(key)}
                for key, value in values.items()
            }
            console.print_json(data=payload)
            op.success("Rendered variables as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Variable", style="bold")
        table.add_column("Value")
        table.add_column("Source")
        for key, value in values.items():
            source = context.source_of(key) or "-"
            style = "yellow" if source == LAYER_SECRETS else None
            table.add_row(key, escape(str(value)), source, style=style)
        console.print(table)
        op.success("Rendered variables table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
