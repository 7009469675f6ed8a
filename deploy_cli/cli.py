from __future__ import annotations

import argparse
import contextlib
import io
import os
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv

from . import __version__
from .cli_shared import (
    DEFAULT_STACK,
    GlobalOpts,
    OpError,
    UsageError,
    _env_or_none,
    _eprint,
    _rich_error,
)
from .stack_commands import cmd_application_deploy, cmd_stack_output


def _bootstrap_env() -> None:
    # Discover and load .env without overriding already-exported values.
    load_dotenv()


def _namespace(**kwargs: Any) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"todo-deploy {__version__}")
        raise typer.Exit(code=0)


def _apply_global_env(args: argparse.Namespace) -> GlobalOpts:
    if getattr(args, "profile", None):
        os.environ["AWS_PROFILE"] = str(args.profile).strip()
    if getattr(args, "region", None):
        os.environ["AWS_REGION"] = str(args.region).strip()
    stack = (getattr(args, "stack", None) or _env_or_none("STACK") or DEFAULT_STACK).strip()
    return GlobalOpts(
        stack=stack,
        pretty=not bool(getattr(args, "plain_json", False)),
        quiet=bool(getattr(args, "quiet", False)),
    )


def _root_help_text(*, root_app: typer.Typer, prog_name: str) -> str:
    buf = io.StringIO()
    try:
        with contextlib.redirect_stdout(buf):
            try:
                root_app(args=["--help"], prog_name=prog_name, standalone_mode=False)
            except (typer.Exit, click.ClickException):
                pass
    except Exception:
        return ""
    return str(buf.getvalue() or "").strip()


def _render_usage_error_with_help(
    *,
    message: str,
    ctx: click.Context | None = None,
    fallback_help: str = "",
) -> None:
    _rich_error(message)
    help_text = ""
    if isinstance(ctx, click.Context):
        try:
            help_text = str(ctx.get_help() or "").strip()
        except Exception:
            help_text = ""
    if not help_text:
        help_text = str(fallback_help or "").strip()
    if help_text:
        _eprint("")
        _eprint(help_text)


app = typer.Typer(
    name="todo-deploy",
    help="Upload CloudFormation templates and create/update the todo application stacks.",
    no_args_is_help=True,
    add_completion=False,
)

application_app = typer.Typer(
    help="Parent application stack (network + service child stacks)",
    no_args_is_help=True,
)
app.add_typer(application_app, name="application")


@app.callback()
def app_callback(
    ctx: typer.Context,
    profile: str | None = typer.Option(None, "--profile", help="AWS CLI profile name (sets AWS_PROFILE)"),
    region: str | None = typer.Option(None, "--region", help="AWS region (sets AWS_REGION)"),
    stack: str | None = typer.Option(
        None,
        "--stack",
        help=f"CloudFormation stack name (default: env STACK or {DEFAULT_STACK})",
    ),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    quiet: bool = typer.Option(False, "--quiet", help="Reduce stderr logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    g = _apply_global_env(
        _namespace(
            profile=profile,
            region=region,
            stack=stack,
            plain_json=plain_json,
            quiet=quiet,
        )
    )
    ctx.obj = {"g": g}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    if isinstance(ctx.obj, dict) and isinstance(ctx.obj.get("g"), GlobalOpts):
        return ctx.obj["g"]
    return _apply_global_env(_namespace())


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = _namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


def _deploy_application(
    ctx: typer.Context,
    *,
    mode: str,
    image_url: str,
    user_pool_client_secret: str,
    bucket: str | None,
    prefix: str | None,
    templates_dir: str | None,
    parent_template: str | None,
    registry_stack_name: str | None,
    capabilities: list[str] | None,
    dry_run: bool,
) -> None:
    _invoke(
        ctx,
        cmd_application_deploy,
        mode=mode,
        image_url=image_url,
        user_pool_client_secret=user_pool_client_secret,
        bucket=bucket or _env_or_none("TEMPLATE_BUCKET"),
        prefix=prefix or _env_or_none("TEMPLATE_PREFIX"),
        templates_dir=templates_dir,
        parent_template=parent_template,
        registry_stack_name=registry_stack_name,
        capabilities=capabilities,
        dry_run=dry_run,
    )


_IMAGE_URL_ARG = typer.Argument("", help="Docker image URL for the service stack")
_CLIENT_SECRET_ARG = typer.Argument("", help="Cognito user pool client secret")
_BUCKET_OPT = typer.Option(None, "--bucket", help="Template bucket (default: env TEMPLATE_BUCKET or aws101.dev)")
_PREFIX_OPT = typer.Option(None, "--prefix", help="Key prefix (default: env TEMPLATE_PREFIX or stacks/application)")
_TEMPLATES_DIR_OPT = typer.Option(None, "--templates-dir", help="Directory to upload (default: current directory)")
_PARENT_TEMPLATE_OPT = typer.Option(None, "--parent-template", help="Parent template file (default: application.yml)")
_REGISTRY_OPT = typer.Option(
    None, "--registry-stack-name", help="Container registry stack (default: aws101-container-registry)"
)
_CAPABILITY_OPT = typer.Option(None, "--capability", help="CloudFormation capability to acknowledge (repeatable)")
_DRY_RUN_OPT = typer.Option(False, "--dry-run", help="Print actions without uploading or deploying")


@application_app.command("update", help="Upload templates, update the parent stack, and wait for completion.")
def application_update(
    ctx: typer.Context,
    image_url: str = _IMAGE_URL_ARG,
    user_pool_client_secret: str = _CLIENT_SECRET_ARG,
    bucket: str | None = _BUCKET_OPT,
    prefix: str | None = _PREFIX_OPT,
    templates_dir: str | None = _TEMPLATES_DIR_OPT,
    parent_template: str | None = _PARENT_TEMPLATE_OPT,
    registry_stack_name: str | None = _REGISTRY_OPT,
    capability: list[str] | None = _CAPABILITY_OPT,
    dry_run: bool = _DRY_RUN_OPT,
) -> None:
    _deploy_application(
        ctx,
        mode="update",
        image_url=image_url,
        user_pool_client_secret=user_pool_client_secret,
        bucket=bucket,
        prefix=prefix,
        templates_dir=templates_dir,
        parent_template=parent_template,
        registry_stack_name=registry_stack_name,
        capabilities=capability,
        dry_run=dry_run,
    )


@application_app.command("create", help="Upload templates, create the parent stack, and wait for completion.")
def application_create(
    ctx: typer.Context,
    image_url: str = _IMAGE_URL_ARG,
    user_pool_client_secret: str = _CLIENT_SECRET_ARG,
    bucket: str | None = _BUCKET_OPT,
    prefix: str | None = _PREFIX_OPT,
    templates_dir: str | None = _TEMPLATES_DIR_OPT,
    parent_template: str | None = _PARENT_TEMPLATE_OPT,
    registry_stack_name: str | None = _REGISTRY_OPT,
    capability: list[str] | None = _CAPABILITY_OPT,
    dry_run: bool = _DRY_RUN_OPT,
) -> None:
    _deploy_application(
        ctx,
        mode="create",
        image_url=image_url,
        user_pool_client_secret=user_pool_client_secret,
        bucket=bucket,
        prefix=prefix,
        templates_dir=templates_dir,
        parent_template=parent_template,
        registry_stack_name=registry_stack_name,
        capabilities=capability,
        dry_run=dry_run,
    )


@app.command("stack-output", help="Print all stack outputs, or the value of one output key.")
def stack_output(
    ctx: typer.Context,
    output_key: str = typer.Argument("", help="Optional output key"),
) -> None:
    _invoke(ctx, cmd_stack_output, output_key=output_key)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    prog_name = "todo-deploy"
    _bootstrap_env()
    try:
        result = app(args=argv, prog_name=prog_name, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error_with_help(
            message=str(e),
            fallback_help=_root_help_text(root_app=app, prog_name=prog_name),
        )
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
