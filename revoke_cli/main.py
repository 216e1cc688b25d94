from __future__ import annotations

import sys
from typing import Any

import click
import typer

from . import __version__
from .cli_shared import (
    DEFAULT_STACK_NAME,
    FUNCTION_NAME_OUTPUT,
    REVOKE_STACK_NAME,
    FunctionError,
    GlobalOpts,
    OpError,
    UsageError,
    _account_session,
    _bootstrap_env,
    _env_or_none,
    _invoke_function,
    _load_json_object,
    _print_json,
    _require_stack_output,
    _require_str,
    _rich_error,
    _target_secrets,
)

# EX_TEMPFAIL: the action failed but a later retry may succeed.
EXIT_RETRYABLE = 75

app = typer.Typer(
    name="revoke-session",
    help="Revoke IAM role sessions through the deployed revoke-session action.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"revoke-session {__version__}")
        raise typer.Exit(code=0)


@app.callback()
def app_callback(
    ctx: typer.Context,
    stack: str = typer.Option(
        "",
        "--stack",
        help=f"CloudFormation stack name (env override: {REVOKE_STACK_NAME})",
    ),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    del version
    stack_name = (stack or "").strip() or _env_or_none(REVOKE_STACK_NAME) or DEFAULT_STACK_NAME
    ctx.obj = {"g": GlobalOpts(stack=stack_name, pretty=not plain_json)}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    if isinstance(ctx.obj, dict) and isinstance(ctx.obj.get("g"), GlobalOpts):
        return ctx.obj["g"]
    return GlobalOpts(stack=_env_or_none(REVOKE_STACK_NAME) or DEFAULT_STACK_NAME, pretty=True)


def _call(g: GlobalOpts, event: dict[str, Any]) -> dict[str, Any]:
    session = _account_session()
    function_name = _require_stack_output(session, stack=g.stack, key=FUNCTION_NAME_OUTPUT)
    return _invoke_function(session, function_name=function_name, event=event)


@app.command("stack-output")
def stack_output(ctx: typer.Context) -> None:
    """Print the deployed function name for the selected stack."""
    g = _ctx_global(ctx)
    session = _account_session()
    function_name = _require_stack_output(session, stack=g.stack, key=FUNCTION_NAME_OUTPUT)
    _print_json({"stack": g.stack, FUNCTION_NAME_OUTPUT: function_name}, pretty=g.pretty)


@app.command("invoke")
def invoke_cmd(
    ctx: typer.Context,
    role_name: str = typer.Option(..., "--role-name", help="IAM role whose sessions are revoked"),
    region: str = typer.Option(..., "--region", help="Region for the IAM client"),
    token_issue_time: str = typer.Option(
        "",
        "--token-issue-time",
        help="ISO-8601 cutoff; sessions issued before it are denied (default: now)",
    ),
    conditions: str = typer.Option("", "--conditions", help="JSON object of extra IAM conditions"),
    data_json: str = typer.Option("{}", "--data-json", help="JSON job data for {$.path} templates"),
) -> None:
    """Attach the revocation policy to a role."""
    g = _ctx_global(ctx)
    params: dict[str, Any] = {
        "roleName": _require_str(role_name, "--role-name", hint="IAM role name"),
        "region": _require_str(region, "--region", hint="AWS region"),
    }
    if token_issue_time.strip():
        params["tokenIssueTime"] = token_issue_time.strip()
    if conditions.strip():
        params["conditions"] = _load_json_object(conditions, name="--conditions")

    event = {
        "op": "invoke",
        "params": params,
        "context": {
            "secrets": _target_secrets(),
            "data": _load_json_object(data_json, name="--data-json"),
        },
    }
    _print_json(_call(g, event), pretty=g.pretty)


@app.command("halt")
def halt_cmd(
    ctx: typer.Context,
    role_name: str = typer.Option("", "--role-name", help="Role of the job being halted"),
    reason: str = typer.Option("", "--reason", help="Why the job is being halted"),
) -> None:
    """Send a halt notification to the action."""
    g = _ctx_global(ctx)
    params: dict[str, Any] = {}
    if role_name.strip():
        params["roleName"] = role_name.strip()
    if reason.strip():
        params["reason"] = reason.strip()
    _print_json(_call(g, {"op": "halt", "params": params, "context": {}}), pretty=g.pretty)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        _bootstrap_env()
        result = app(args=argv, prog_name="revoke-session", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except FunctionError as e:
        kind = "retryable" if e.retryable else "fatal"
        _rich_error(f"{e.error_type or 'FunctionError'} ({kind}): {e}")
        return EXIT_RETRYABLE if e.retryable else 1
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
