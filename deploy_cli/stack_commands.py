from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError, WaiterError

from .cli_shared import (
    GlobalOpts,
    OpError,
    UsageError,
    _account_session,
    _cf_outputs,
    _info,
    _print_json,
    _require_str,
    _stack_output_value,
)

DEPLOY_MODES = ("create", "update")

# CloudFormation reports an update without changes as a ValidationError.
NO_UPDATES_MESSAGE = "No updates are to be performed"

_WAITERS = {
    "create": "stack_create_complete",
    "update": "stack_update_complete",
}


@dataclass(frozen=True)
class ApplicationStackConfig:
    bucket: str = "aws101.dev"
    prefix: str = "stacks/application"
    stack_name: str = "aws101-application-parent"
    templates_dir: str = "."
    parent_template: str = "application.yml"
    network_template: str = "network.yml"
    service_template: str = "service.yml"
    registry_stack_name: str = "aws101-container-registry"


def template_url(bucket: str, prefix: str, name: str) -> str:
    p = (prefix or "").strip("/")
    key = f"{p}/{name}" if p else name
    return f"https://s3.amazonaws.com/{bucket}/{key}"


def application_stack_parameters(
    cfg: ApplicationStackConfig, *, image_url: str, user_pool_client_secret: str
) -> list[dict[str, str]]:
    values = [
        ("NetworkStackTemplateUrl", template_url(cfg.bucket, cfg.prefix, cfg.network_template)),
        ("ServiceStackTemplateUrl", template_url(cfg.bucket, cfg.prefix, cfg.service_template)),
        ("ServiceStackImageUrl", image_url),
        ("ServiceStackUserPoolClientSecret", user_pool_client_secret),
        ("RegistryStackName", cfg.registry_stack_name),
    ]
    return [{"ParameterKey": k, "ParameterValue": v} for k, v in values]


def upload_templates(
    s3: Any,
    *,
    templates_dir: Path,
    bucket: str,
    prefix: str,
    dry_run: bool = False,
    quiet: bool = True,
) -> list[str]:
    """Upload every file below templates_dir to s3://bucket/prefix/, keeping relative paths."""
    if not templates_dir.is_dir():
        raise UsageError(f"templates directory not found: {templates_dir}")
    p = (prefix or "").strip("/")
    keys: list[str] = []
    for path in sorted(templates_dir.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(templates_dir).as_posix()
        key = f"{p}/{rel}" if p else rel
        keys.append(key)
        if dry_run:
            _info(f"DRYRUN put s3://{bucket}/{key}", quiet=quiet)
            continue
        _info(f"upload {rel} -> s3://{bucket}/{key}", quiet=quiet)
        try:
            s3.put_object(Bucket=bucket, Key=key, Body=path.read_bytes())
        except Exception as e:
            raise OpError(f"s3 put-object failed for s3://{bucket}/{key}: {e}") from e
    return keys


def _is_no_updates_error(e: ClientError) -> bool:
    err = e.response.get("Error") or {}
    return NO_UPDATES_MESSAGE in str(err.get("Message") or "")


def deploy_stack(
    cf: Any,
    *,
    stack_name: str,
    template_body: str,
    parameters: list[dict[str, str]],
    mode: str,
    capabilities: list[str] | None = None,
    quiet: bool = True,
) -> dict[str, Any]:
    if mode not in DEPLOY_MODES:
        raise UsageError(f"invalid deploy mode {mode!r} (expected one of: {', '.join(DEPLOY_MODES)})")

    request: dict[str, Any] = {
        "StackName": stack_name,
        "TemplateBody": template_body,
        "Parameters": parameters,
    }
    if capabilities:
        request["Capabilities"] = list(capabilities)

    call = cf.create_stack if mode == "create" else cf.update_stack
    _info(f"{mode} stack {stack_name}", quiet=quiet)
    try:
        call(**request)
    except ClientError as e:
        if mode == "update" and _is_no_updates_error(e):
            _info(f"stack {stack_name} is already up to date", quiet=quiet)
            return {"stackName": stack_name, "mode": mode, "changed": False}
        raise OpError(f"cloudformation {mode}-stack failed for stack {stack_name!r}: {e}") from e

    _info(f"waiting for {stack_name} to reach {mode.upper()}_COMPLETE", quiet=quiet)
    try:
        cf.get_waiter(_WAITERS[mode]).wait(StackName=stack_name)
    except WaiterError as e:
        raise OpError(f"stack {stack_name!r} did not reach {mode.upper()}_COMPLETE: {e}") from e
    return {"stackName": stack_name, "mode": mode, "changed": True}


def _application_config(args: argparse.Namespace, g: GlobalOpts) -> ApplicationStackConfig:
    defaults = ApplicationStackConfig()
    return ApplicationStackConfig(
        bucket=str(getattr(args, "bucket", None) or defaults.bucket).strip(),
        prefix=str(getattr(args, "prefix", None) or defaults.prefix).strip(),
        stack_name=g.stack,
        templates_dir=str(getattr(args, "templates_dir", None) or defaults.templates_dir),
        parent_template=str(getattr(args, "parent_template", None) or defaults.parent_template),
        network_template=str(getattr(args, "network_template", None) or defaults.network_template),
        service_template=str(getattr(args, "service_template", None) or defaults.service_template),
        registry_stack_name=str(
            getattr(args, "registry_stack_name", None) or defaults.registry_stack_name
        ).strip(),
    )


def cmd_application_deploy(args: argparse.Namespace, g: GlobalOpts) -> int:
    image_url = _require_str(args.image_url, "docker image url", hint="first positional argument")
    client_secret = _require_str(
        args.user_pool_client_secret,
        "user pool client secret",
        hint="second positional argument",
    )
    mode = str(getattr(args, "mode", "update") or "update")
    dry_run = bool(getattr(args, "dry_run", False))
    cfg = _application_config(args, g)

    templates_dir = Path(cfg.templates_dir).resolve()
    parent_template_path = templates_dir / cfg.parent_template
    if not parent_template_path.is_file():
        raise UsageError(f"parent template not found: {parent_template_path}")
    template_body = parent_template_path.read_text(encoding="utf-8")
    parameters = application_stack_parameters(
        cfg, image_url=image_url, user_pool_client_secret=client_secret
    )

    session = None if dry_run else _account_session()
    keys = upload_templates(
        None if session is None else session.client("s3"),
        templates_dir=templates_dir,
        bucket=cfg.bucket,
        prefix=cfg.prefix,
        dry_run=dry_run,
        quiet=g.quiet,
    )

    if dry_run:
        result: dict[str, Any] = {"stackName": cfg.stack_name, "mode": mode, "changed": False}
    else:
        result = deploy_stack(
            session.client("cloudformation"),
            stack_name=cfg.stack_name,
            template_body=template_body,
            parameters=parameters,
            mode=mode,
            capabilities=list(getattr(args, "capabilities", None) or []),
            quiet=g.quiet,
        )

    result.update(
        {
            "bucket": cfg.bucket,
            "uploadedKeys": keys,
            # The client secret stays out of the printed summary.
            "parameterKeys": [p["ParameterKey"] for p in parameters],
            "dryRun": dry_run,
        }
    )
    _print_json(result, pretty=g.pretty)
    return 0


def cmd_stack_output(args: argparse.Namespace, g: GlobalOpts) -> int:
    session = _account_session()
    key = str(getattr(args, "output_key", "") or "").strip()
    if not key:
        _print_json(_cf_outputs(session, stack=g.stack), pretty=g.pretty)
        return 0
    v = _stack_output_value(session, stack=g.stack, key=key)
    if v is None:
        raise OpError(f"output key not found: {key}")
    sys.stdout.write(v + "\n")
    return 0
