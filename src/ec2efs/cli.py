"""Typer-powered command line entry point for ``ec2efs``.

The CLI is the process boundary: it loads configuration once, resolves the
account id, builds the :class:`~ec2efs.context.EnvironmentContext` and hands
it to the stack orchestrator. Everything below this module receives its
inputs by value.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .accounts import resolve_account_id
from .artifacts import ArtifactStore, ArtifactStoreError, dump_template
from .config import AppConfig, ConfigError, load_config
from .context import EnvironmentContext, stack_name_for
from .errors import (
    AccountNotFound,
    Ec2EfsError,
    NetworkNotFound,
    ProviderError,
    SubnetPlacementError,
)
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import (
    CloudFormationDeployer,
    DeployError,
    Ec2NetworkLookup,
    NetworkLookup,
    S3AssetBundle,
    machine_image_for,
)
from .stack import StackOrchestrator, StackResult, default_tags

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to ec2efs's YAML config file.",
)
ENV_NAME_OPTION = typer.Option(
    None,
    "--env-name",
    help="Environment name (stack becomes ec2-efs-<env-name>).",
)
ACCOUNT_NAME_OPTION = typer.Option(
    None,
    "--account-name",
    help="Account name used for the account lookup and the network name.",
)
REGION_OPTION = typer.Option(None, "--region", help="Target region.")
ACCOUNT_ID_OPTION = typer.Option(
    None,
    "--account-id",
    help="Explicit account id (skips the accounts file lookup).",
)
FORMAT_OPTION = typer.Option(
    None,
    "--format",
    help="Template format (json|yaml). Defaults to the configured output_format.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")
YES_OPTION = typer.Option(
    False,
    "--yes",
    help="Skip confirmation prompt and proceed non-interactively.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision an EC2 instance that mounts a shared, encrypted EFS filesystem.

        Stacks are synthesized as CloudFormation templates; CloudFormation
        applies them in dependency order.
        """
    ).strip(),
)
account_app = typer.Typer(help="Account lookup helpers.")
config_app = typer.Typer(help="Inspect resolved configuration.")
app.add_typer(account_app, name="account")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    artifacts: ArtifactStore
    network_lookup_factory: Callable[[str], NetworkLookup]
    deployer_factory: Callable[[str], CloudFormationDeployer]

    def network_lookup(self) -> NetworkLookup:
        """Return a network lookup bound to the configured region."""
        return self.network_lookup_factory(self.config.region)

    def deployer(self) -> CloudFormationDeployer:
        """Return a deployer bound to the configured region."""
        return self.deployer_factory(self.config.region)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    overrides: Mapping[str, object] | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        artifacts=ArtifactStore(config.out_dir),
        network_lookup_factory=Ec2NetworkLookup,
        deployer_factory=CloudFormationDeployer,
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
        help="Show the ec2efs version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    env_name: str | None = ENV_NAME_OPTION,
    account_name: str | None = ACCOUNT_NAME_OPTION,
    region: str | None = REGION_OPTION,
    account_id: str | None = ACCOUNT_ID_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    overrides = {
        key: value
        for key, value in (
            ("env_name", env_name),
            ("account_name", account_name),
            ("region", region),
            ("account_id", account_id),
        )
        if value is not None
    }
    runtime = _ensure_runtime(ctx, config_file, overrides)

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"ec2efs {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, ProviderError):
        return ExitCode.PROVIDER
    if isinstance(exc, (NetworkNotFound, SubnetPlacementError, ArtifactStoreError)):
        return ExitCode.ENVIRONMENT
    return ExitCode.VALIDATION


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _confirm(message: str, *, yes: bool) -> bool:
    if yes:
        return True
    return typer.confirm(message, default=False)


def _resolve_account(runtime: RuntimeContext, op: OperationScope) -> str:
    config = runtime.config
    try:
        account_id = resolve_account_id(
            config.account_name,
            config.accounts_file,
            override=config.account_id_override,
        )
    except (AccountNotFound, ConfigError) as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    op.add_step(
        "account.resolve",
        detail={
            "account_name": config.account_name,
            "source": "override" if config.account_id_override else str(config.accounts_file),
        },
    )
    return account_id


def _environment_context(runtime: RuntimeContext, op: OperationScope) -> EnvironmentContext:
    account_id = _resolve_account(runtime, op)
    context = EnvironmentContext.from_config(runtime.config, account_id)
    op.add_step("context.resolved", detail=context.to_dict())
    return context


def _build_stack(runtime: RuntimeContext, op: OperationScope) -> StackResult:
    """Resolve the environment and declare the full stack."""
    config = runtime.config
    context = _environment_context(runtime, op)
    try:
        bundle = S3AssetBundle(
            bucket=config.asset.bucket_for(context.account_id, context.region),
            key=config.asset.key,
        )
        orchestrator = StackOrchestrator(
            context=context,
            network_lookup=runtime.network_lookup(),
            asset_bundle=bundle,
            machine_image=machine_image_for(config.instance.image_id, context.region),
            instance_type=config.instance.type,
            instance_name=config.instance.name,
            narrow_filesystem_scope=config.policy.narrow_filesystem_scope,
            tags=default_tags(context, config.tags),
            on_transition=lambda state: op.add_step(f"stack.{state.value}"),
        )
    except Ec2EfsError as exc:
        _command_error(op, str(exc), rc=_exit_code_for(exc))

    try:
        return orchestrator.build()
    except Ec2EfsError as exc:
        _command_error(
            op,
            str(exc),
            rc=_exit_code_for(exc),
            context={"stack": context.stack_name, "state": orchestrator.state.value},
        )


def _render_plan(result: StackResult) -> None:
    graph = result.graph
    table = Table(title=f"{result.context.stack_name} creation order")
    table.add_column("Wave", justify="right")
    table.add_column("Logical ID")
    table.add_column("Type")
    table.add_column("Depends on")
    for index, wave in enumerate(graph.creation_waves()):
        for logical_id in wave:
            resource = graph.get(logical_id)
            depends = ", ".join(sorted(graph.dependencies(logical_id))) or "-"
            table.add_row(str(index), logical_id, resource.type, depends)
    console.print(table)
    for name in result.outputs.export_names():
        console.print(f"export: {name}")


def _plan_payload(result: StackResult) -> dict[str, object]:
    graph = result.graph
    return {
        "stack": result.context.stack_name,
        "waves": graph.creation_waves(),
        "resources": [
            {
                "logical_id": logical_id,
                "type": graph.get(logical_id).type,
                "depends_on": sorted(graph.dependencies(logical_id)),
                "explicit": sorted(graph.explicit_dependencies(logical_id)),
            }
            for logical_id in graph.topological_order()
        ],
        "exports": list(result.outputs.export_names()),
    }


# ----------------------------------------------------------------------
# Stack commands
# ----------------------------------------------------------------------
@app.command("synth")
def synth(
    ctx: typer.Context,
    output_format: str | None = FORMAT_OPTION,
    out_dir: Path | None = typer.Option(
        None,
        "--out-dir",
        file_okay=False,
        help="Override the output directory for this invocation.",
    ),
    stdout: bool = typer.Option(
        False,
        "--stdout",
        help="Print the template instead of writing it to the output directory.",
    ),
) -> None:
    """Synthesize the stack into a CloudFormation template."""
    runtime = _get_runtime(ctx)
    fmt = (output_format or runtime.config.output_format).lower()
    args = {"format": fmt, "out_dir": str(out_dir) if out_dir else None, "stdout": stdout}
    with runtime.logger.operation("synth", args=args, target={"kind": "stack"}) as op:
        if fmt not in {"json", "yaml"}:
            _command_error(op, f"Unsupported template format '{fmt}'.", rc=ExitCode.VALIDATION)
        result = _build_stack(runtime, op)
        template = result.template()
        stack_name = result.context.stack_name

        if stdout:
            typer.echo(dump_template(template, fmt), nl=False)
            op.success("Synthesized template to stdout.", changed=0)
            return

        store = ArtifactStore(out_dir) if out_dir else runtime.artifacts
        try:
            path = store.write_template(
                stack_name,
                template,
                output_format=fmt,
                metadata={
                    "region": result.context.region,
                    "account_id": result.context.account_id,
                    "image_pinned": runtime.config.instance.image_id is not None,
                },
            )
        except ArtifactStoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        console.print(f"Wrote {path}")
        op.success(
            "Synthesized template.",
            changed=1,
            context={"stack": stack_name, "path": str(path)},
        )


@app.command("plan")
def plan(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show resources in creation order with their dependencies."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "plan",
        args={"json": json_output},
        target={"kind": "stack"},
    ) as op:
        result = _build_stack(runtime, op)
        if json_output:
            typer.echo(json.dumps(_plan_payload(result), indent=2))
        else:
            _render_plan(result)
        op.success(
            "Planned stack.",
            changed=0,
            context={"stack": result.context.stack_name, "resources": len(result.graph)},
        )


@app.command("deploy")
def deploy(ctx: typer.Context, yes: bool = YES_OPTION) -> None:
    """Synthesize the stack and submit it to CloudFormation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("deploy", args={"yes": yes}, target={"kind": "stack"}) as op:
        result = _build_stack(runtime, op)
        stack_name = result.context.stack_name
        if not _confirm(f"Deploy stack {stack_name}?", yes=yes):
            console.print("Aborted.")
            op.warning("Deploy aborted by operator.", context={"stack": stack_name})
            raise typer.Exit(code=ExitCode.OK)

        body = dump_template(result.template(), "json")
        try:
            outcome = runtime.deployer().deploy(
                stack_name,
                body,
                tags=default_tags(result.context, runtime.config.tags),
            )
        except DeployError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER, context={"stack": stack_name})
        op.add_step("cloudformation.deploy", detail={"action": outcome.action})

        console.print(f"Stack {stack_name}: {outcome.action}")
        for name, value in sorted(outcome.outputs.items()):
            console.print(f"  {name} = {value}")
        op.success(
            f"Stack {outcome.action}.",
            changed=0 if outcome.action == "unchanged" else 1,
            context={"stack": stack_name, "outputs": outcome.outputs},
        )


@app.command("destroy")
def destroy(ctx: typer.Context, yes: bool = YES_OPTION) -> None:
    """Delete the stack; the filesystem and its data are removed with it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("destroy", args={"yes": yes}, target={"kind": "stack"}) as op:
        stack_name = stack_name_for(runtime.config.env_name)
        if not _confirm(f"Destroy stack {stack_name} and its filesystem data?", yes=yes):
            console.print("Aborted.")
            op.warning("Destroy aborted by operator.", context={"stack": stack_name})
            raise typer.Exit(code=ExitCode.OK)
        try:
            deleted = runtime.deployer().destroy(stack_name)
        except DeployError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER, context={"stack": stack_name})
        if not deleted:
            console.print(f"Stack {stack_name} does not exist.")
            op.success("Nothing to destroy.", changed=0, context={"stack": stack_name})
            return
        console.print(f"Deleted stack {stack_name}.")
        op.success("Stack deleted.", changed=1, context={"stack": stack_name})


@app.command("outputs")
def outputs(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the exported outputs of the deployed stack."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "outputs",
        args={"json": json_output},
        target={"kind": "stack"},
    ) as op:
        stack_name = stack_name_for(runtime.config.env_name)
        try:
            values = runtime.deployer().outputs(stack_name)
        except DeployError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER, context={"stack": stack_name})
        if json_output:
            typer.echo(json.dumps(values, indent=2, sort_keys=True))
        else:
            table = Table(title=f"{stack_name} outputs")
            table.add_column("Export")
            table.add_column("Value")
            for name, value in sorted(values.items()):
                table.add_row(name, value)
            console.print(table)
        op.success("Read stack outputs.", changed=0, context={"stack": stack_name})


# ----------------------------------------------------------------------
# account / config
# ----------------------------------------------------------------------
@account_app.command("resolve")
def account_resolve(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Account name (defaults to the configured one)."),
) -> None:
    """Print the account id for an account name."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    account_name = name or config.account_name
    with runtime.logger.operation(
        "account resolve",
        args={"name": account_name},
        target={"kind": "account", "name": account_name},
    ) as op:
        override = config.account_id_override if account_name == config.account_name else None
        try:
            account_id = resolve_account_id(account_name, config.accounts_file, override=override)
        except (AccountNotFound, ConfigError) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        typer.echo(account_id)
        op.success("Resolved account id.", changed=0)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the resolved configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        payload = runtime.config.to_dict()
        if json_output:
            typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        else:
            table = Table(title="ec2efs configuration")
            table.add_column("Key")
            table.add_column("Value")
            for key, value in payload.items():
                rendered = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
                table.add_row(key, rendered)
            console.print(table)
        op.success("Displayed configuration.", changed=0)


def main() -> None:  # pragma: no cover - console script shim
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
