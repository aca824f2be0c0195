"""Typer-powered command line interface for ``supactl``.

``supactl local ...`` provisions and drives instances on this machine. The
top-level lifecycle commands (``list``, ``get``, ``create``, ``delete``,
``start``, ``stop``, ``restart``, ``logs``) are routed through the provider
selected by the active configuration context, so the same command works
against the local Docker host or a remote SupaControl server.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import AlreadyInDesiredStateError, SupactlError
from .exit_codes import ExitCode
from .instances import Instance, InstanceProvider, LocalProvider, RemoteProvider
from .logging import OperationScope, StructuredLogger, configure_console_logging
from .ports import PORT_OFFSETS
from .provisioning import ProvisionResult, Provisioner, validate_project_id
from .providers import ComposeDriver, SourceFetcher
from .providers.compose import DEFAULT_LOG_LINES
from .state import RegistryStore

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to supactl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

LINES_OPTION = typer.Option(
    DEFAULT_LOG_LINES,
    "--lines",
    "-n",
    min=1,
    help="Number of log lines to show.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage self-hosted Supabase instances.

        Instances are either provisioned on this machine with Docker Compose
        (`supactl local ...`) or managed through a remote SupaControl server,
        depending on the active context.
        """
    ).strip(),
)
local_app = typer.Typer(help="Provision and manage instances on this machine.")
ports_app = typer.Typer(help="Inspect port assignments of local instances.")
config_app = typer.Typer(help="Inspect the effective configuration and contexts.")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    store: RegistryStore
    compose: ComposeDriver
    fetcher: SourceFetcher

    def provisioner(self) -> Provisioner:
        """Return a provisioner wired to this runtime."""
        return Provisioner(
            store=self.store,
            fetcher=self.fetcher,
            dashboard_username=self.config.dashboard_username,
        )

    def local_provider(self) -> LocalProvider:
        """Return the provider for instances on this machine."""
        return LocalProvider(
            store=self.store,
            compose=self.compose,
            host_address=self.config.host_address,
        )

    def instance_provider(self) -> InstanceProvider:
        """Return the provider selected by the current context."""
        context = self.config.context()
        if context.is_remote:
            return RemoteProvider.connect(
                context.server_url or "",
                context.api_key or "",
                timeout=self.config.remote_timeout,
            )
        return self.local_provider()


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    verbose: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    configure_console_logging(console, verbose=verbose)
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc.message}[/red]")
        if exc.remediation:
            console.print(f"[yellow]Hint:[/yellow] {exc.remediation}")
        raise typer.Exit(code=int(exc.exit_code)) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        store=RegistryStore(config.registry_file, base_port=config.ports.base),
        compose=ComposeDriver(docker_bin=config.tools.docker_bin),
        fetcher=SourceFetcher(repo_url=config.tools.repo_url, git_bin=config.tools.git_bin),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the supactl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging from supactl's internals.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, verbose)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"supactl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, verbose)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


app.add_typer(local_app, name="local")
app.add_typer(ports_app, name="ports")
app.add_typer(config_app, name="config")


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    remediation: str | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    if remediation:
        console.print(f"[yellow]Hint:[/yellow] {remediation}")
    op.error(message, errors=[message], rc=int(rc))
    raise typer.Exit(code=int(rc))


def _handle_error(op: OperationScope, exc: SupactlError) -> NoReturn:
    """Report *exc* and exit with its code; already-in-state is only a warning."""
    if isinstance(exc, AlreadyInDesiredStateError):
        console.print(f"[yellow]{exc.message}[/yellow]")
        op.warning(exc.message, changed=0, context={"state": exc.state})
        raise typer.Exit(code=int(ExitCode.OK))
    _command_error(op, exc.message, rc=exc.exit_code, remediation=exc.remediation)


def _context_target(runtime: RuntimeContext, name: str | None = None) -> dict[str, object]:
    context = runtime.config.current_context
    target: dict[str, object] = {"kind": "instance", "context": context}
    if name is not None:
        target["name"] = name
    return target


def _render_instances(instances: list[Instance]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Studio URL")
    table.add_column("API URL")

    if not instances:
        table.add_row("(none)", "", "", "")
    else:
        for instance in instances:
            table.add_row(
                instance.name,
                _format_status(instance.status),
                instance.studio_url,
                instance.api_url,
            )
    console.print(table)


def _render_instance(instance: Instance) -> None:
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in instance.to_dict().items():
        rendered = _format_status(str(value)) if key == "status" else str(value)
        table.add_row(key, rendered)
    console.print(table)


def _format_status(status: str) -> str:
    if status == "running":
        return "[green]running[/green]"
    if status == "stopped":
        return "[yellow]stopped[/yellow]"
    return status


def _render_provision_result(result: ProvisionResult, dashboard_username: str) -> None:
    secrets = result.secrets
    ports = result.project.ports
    console.print(f"[green]Project '{result.project_id}' created and configured.[/green]")
    console.print(f"Generated secrets were written to {result.env_file}")

    credentials = Table(show_header=False, title="Credentials")
    credentials.add_column("Key", style="bold")
    credentials.add_column("Value")
    credentials.add_row("DASHBOARD_USERNAME", dashboard_username)
    credentials.add_row("DASHBOARD_PASSWORD", secrets.dashboard_password)
    credentials.add_row("POSTGRES_PASSWORD", secrets.postgres_password)
    credentials.add_row("VAULT_ENC_KEY", secrets.vault_enc_key)
    credentials.add_row("JWT_SECRET", secrets.jwt_secret)
    credentials.add_row("ANON_KEY", secrets.anon_key)
    credentials.add_row("SERVICE_ROLE_KEY", secrets.service_role_key)
    console.print(credentials)

    port_table = Table(show_header=False, title="Ports")
    port_table.add_column("Service", style="bold")
    port_table.add_column("Port")
    port_table.add_row("API", str(ports.api))
    port_table.add_row("DB", str(ports.db))
    port_table.add_row("Studio", str(ports.studio))
    port_table.add_row("Inbucket", str(ports.inbucket))
    console.print(port_table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    console.print(f"Start the instance with: supactl local start {result.project_id}")


# ----------------------------------------------------------------------
# local
# ----------------------------------------------------------------------
@local_app.command("add")
def local_add(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Identifier of the new instance."),
    directory: Path | None = typer.Argument(
        None,
        file_okay=False,
        help="Target directory (defaults to <projects_root>/<project-id>).",
    ),
) -> None:
    """Clone, configure and register a new local instance."""
    runtime = _get_runtime(ctx)
    target_dir = (directory or runtime.config.projects_root / project_id).expanduser().absolute()

    with runtime.logger.operation(
        "local add",
        args={"project_id": project_id, "directory": target_dir},
        target={"kind": "instance", "name": project_id, "context": "local"},
    ) as op:
        try:
            validate_project_id(project_id)
            runtime.compose.ensure_available()
            op.add_step("docker.preflight")
            console.print(f"Creating local instance '{project_id}' in {target_dir} ...")
            result = runtime.provisioner().provision(project_id, target_dir, op=op)
        except SupactlError as exc:
            _handle_error(op, exc)

        _render_provision_result(result, runtime.config.dashboard_username)
        context = {"directory": target_dir, "api_port": result.project.ports.api}
        if result.warnings:
            op.warning(
                "Instance provisioned with warnings.",
                warnings=result.warnings,
                changed=1,
                context=context,
            )
        else:
            op.success("Instance provisioned.", changed=1, context=context)


@local_app.command("list")
def local_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List locally registered instances."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "local list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "registry"},
    ) as op:
        try:
            registry = runtime.store.load()
        except SupactlError as exc:
            _handle_error(op, exc)

        entries = [{"name": name, **project.to_dict()} for name, project in registry]
        if json_output:
            console.print_json(data={"projects": entries})
            op.success("Reported local instances as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Project", style="bold")
        table.add_column("Directory")
        table.add_column("API")
        table.add_column("DB")
        table.add_column("Studio")

        if not entries:
            table.add_row("(none)", "", "", "", "")
        else:
            for name, project in registry:
                table.add_row(
                    name,
                    project.directory,
                    str(project.ports.api),
                    str(project.ports.db),
                    str(project.ports.studio),
                )
        console.print(table)
        op.success("Reported local instances.", changed=0)


@local_app.command("remove")
def local_remove(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Identifier of the instance to remove."),
    stop: bool = typer.Option(
        True,
        "--stop/--no-stop",
        help="Stop the instance's containers before removing it.",
    ),
) -> None:
    """Forget a local instance; its directory is left on disk."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "local remove",
        args={"project_id": project_id, "stop": stop},
        target={"kind": "instance", "name": project_id, "context": "local"},
    ) as op:
        warnings: list[str] = []
        try:
            registry = runtime.store.load()
            project = registry.get(project_id)
            if stop and runtime.compose.is_running(project_id, project.directory):
                try:
                    runtime.compose.down(project_id, project.directory)
                    op.add_step("compose.down")
                except SupactlError as exc:
                    warnings.append(f"Failed to stop instance: {exc.message}")
                    op.add_step("compose.down", status="warning", detail=exc.message)
                    console.print(f"[yellow]Warning:[/yellow] {warnings[-1]}")
            registry.remove(project_id)
            runtime.store.save(registry)
            op.add_step("registry.remove", detail=project_id)
        except SupactlError as exc:
            _handle_error(op, exc)

        console.print(f"[green]Project '{project_id}' removed from the registry.[/green]")
        console.print(f"The project directory was not deleted: {project.directory}")
        if warnings:
            op.warning("Instance removed with warnings.", warnings=warnings, changed=1)
        else:
            op.success("Instance removed.", changed=1)


@local_app.command("start")
def local_start(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Identifier of the instance to start."),
) -> None:
    """Start a local instance with docker compose."""
    runtime = _get_runtime(ctx)
    _lifecycle(runtime, runtime.local_provider, "local start", project_id, "start")


@local_app.command("stop")
def local_stop(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Identifier of the instance to stop."),
) -> None:
    """Stop a local instance and remove its containers and volumes."""
    runtime = _get_runtime(ctx)
    _lifecycle(runtime, runtime.local_provider, "local stop", project_id, "stop")


LIFECYCLE_VERBS = {
    "start": ("Starting", "started"),
    "stop": ("Stopping", "stopped"),
    "restart": ("Restarting", "restarted"),
}


def _lifecycle(
    runtime: RuntimeContext,
    provider_factory: Callable[[], InstanceProvider],
    command: str,
    name: str,
    action: str,
) -> None:
    progress, past = LIFECYCLE_VERBS[action]
    with runtime.logger.operation(
        command,
        args={"name": name},
        target=_context_target(runtime, name),
    ) as op:
        try:
            provider = provider_factory()
            console.print(f"{progress} instance '{name}' ...")
            getattr(provider, f"{action}_instance")(name)
        except SupactlError as exc:
            _handle_error(op, exc)
        op.add_step(f"{provider.kind.value}.{action}", detail=name)
        console.print(f"[green]Instance '{name}' {past}.[/green]")
        op.success(f"Instance {past}.", changed=1)


# ----------------------------------------------------------------------
# Provider-routed lifecycle commands
# ----------------------------------------------------------------------
@app.command("list")
def instance_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List instances in the current context."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target=_context_target(runtime),
    ) as op:
        try:
            instances = runtime.instance_provider().list_instances()
        except SupactlError as exc:
            _handle_error(op, exc)

        if json_output:
            console.print_json(data={"instances": [item.to_dict() for item in instances]})
            op.success("Reported instances as JSON.", changed=0)
            return
        _render_instances(instances)
        op.success("Reported instances.", changed=0)


@app.command("get")
def instance_get(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show details of one instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "get",
        args={"name": name, "json": json_output},
        target=_context_target(runtime, name),
    ) as op:
        try:
            instance = runtime.instance_provider().get_instance(name)
        except SupactlError as exc:
            _handle_error(op, exc)

        if json_output:
            console.print_json(data=instance.to_dict())
        else:
            _render_instance(instance)
        op.success("Reported instance.", changed=0)


@app.command("create")
def instance_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the new instance."),
) -> None:
    """Create an instance in the current context."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "create",
        args={"name": name},
        target=_context_target(runtime, name),
    ) as op:
        try:
            instance = runtime.instance_provider().create_instance(name)
        except SupactlError as exc:
            _handle_error(op, exc)

        console.print(f"[green]Instance '{instance.name or name}' created.[/green]")
        _render_instance(instance)
        op.success("Instance created.", changed=1)


@app.command("delete")
def instance_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to delete."),
) -> None:
    """Delete an instance in the current context."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "delete",
        args={"name": name},
        target=_context_target(runtime, name),
    ) as op:
        try:
            provider = runtime.instance_provider()
            provider.delete_instance(name)
        except SupactlError as exc:
            _handle_error(op, exc)

        console.print(f"[green]Instance '{name}' deleted.[/green]")
        if isinstance(provider, LocalProvider):
            console.print("Local files and containers were left in place.")
        op.success("Instance deleted.", changed=1)


@app.command("start")
def instance_start(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to start."),
) -> None:
    """Start an instance in the current context."""
    runtime = _get_runtime(ctx)
    _lifecycle(runtime, runtime.instance_provider, "start", name, "start")


@app.command("stop")
def instance_stop(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to stop."),
) -> None:
    """Stop an instance in the current context."""
    runtime = _get_runtime(ctx)
    _lifecycle(runtime, runtime.instance_provider, "stop", name, "stop")


@app.command("restart")
def instance_restart(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to restart."),
) -> None:
    """Restart an instance in the current context."""
    runtime = _get_runtime(ctx)
    _lifecycle(runtime, runtime.instance_provider, "restart", name, "restart")


@app.command("logs")
def instance_logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    lines: int = LINES_OPTION,
) -> None:
    """Print recent logs of an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"name": name, "lines": lines},
        target=_context_target(runtime, name),
    ) as op:
        try:
            output = runtime.instance_provider().logs(name, lines)
        except SupactlError as exc:
            _handle_error(op, exc)

        console.print(output, markup=False, highlight=False, end="")
        op.success("Reported instance logs.", changed=0)


# ----------------------------------------------------------------------
# ports / config
# ----------------------------------------------------------------------
@ports_app.command("list")
def ports_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List the port block assigned to each local instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ports list",
        args={"json": json_output},
        target={"kind": "ports"},
    ) as op:
        try:
            registry = runtime.store.load()
        except SupactlError as exc:
            _handle_error(op, exc)

        if json_output:
            console.print_json(
                data={
                    "ports": {name: project.ports.to_dict() for name, project in registry},
                    "last_port_assigned": registry.last_port_assigned,
                }
            )
            op.success("Reported port assignments as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Project", style="bold")
        columns = tuple(PORT_OFFSETS)
        for column in columns:
            table.add_column(column)

        rows = 0
        for name, project in registry:
            ports = project.ports.to_dict()
            table.add_row(name, *(str(ports[column]) for column in columns))
            rows += 1
        if not rows:
            table.add_row("(none)", *("" for _ in columns))

        console.print(table)
        console.print(f"Next block starts at {registry.last_port_assigned}.")
        op.success("Reported port assignments.", changed=0)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
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
            if isinstance(value, Mapping):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@config_app.command("get-contexts")
def config_get_contexts(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List configured contexts and mark the current one."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    names = sorted({"local", *config.contexts})
    entries = []
    for name in names:
        context = config.context(name)
        entries.append(
            {
                "name": name,
                "current": name == config.current_context,
                **context.to_dict(),
            }
        )

    with runtime.logger.operation(
        "config get-contexts",
        args={"json": json_output},
        target={"kind": "config", "scope": "contexts"},
    ) as op:
        if json_output:
            console.print_json(data={"contexts": entries})
            op.success("Reported contexts as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Current")
        table.add_column("Name", style="bold")
        table.add_column("Provider")
        table.add_column("Server")
        for entry in entries:
            table.add_row(
                "*" if entry["current"] else "",
                str(entry["name"]),
                str(entry["provider"]),
                str(entry["server_url"] or "-"),
            )
        console.print(table)
        op.success("Reported contexts.", changed=0)


@config_app.command("current-context")
def config_current_context(ctx: typer.Context) -> None:
    """Print the name of the current context."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config current-context",
        target={"kind": "config", "scope": "contexts"},
    ) as op:
        console.print(runtime.config.current_context, markup=False)
        op.success("Reported current context.", changed=0)


@config_app.command("check-context")
def config_check_context(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Context to check (defaults to current)."),
) -> None:
    """Verify that a context's provider is reachable."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config check-context",
        args={"name": name},
        target={"kind": "config", "scope": "contexts"},
    ) as op:
        try:
            context = runtime.config.context(name)
            if context.is_remote:
                provider = RemoteProvider.connect(
                    context.server_url or "",
                    context.api_key or "",
                    timeout=runtime.config.remote_timeout,
                )
                provider.validate_connection()
                op.add_step("remote.auth_check", detail=context.server_url)
            else:
                runtime.compose.ensure_available()
                op.add_step("docker.preflight")
        except SupactlError as exc:
            _handle_error(op, exc)

        console.print(f"[green]Context '{context.name}' is reachable.[/green]")
        op.success("Context reachable.", changed=0, context={"context": context.name})


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
