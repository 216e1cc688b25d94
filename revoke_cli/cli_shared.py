from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any

import boto3
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape


class RevokeCliError(Exception):
    pass


class UsageError(RevokeCliError):
    pass


class OpError(RevokeCliError):
    pass


class FunctionError(OpError):
    """The deployed action raised; ``retryable`` mirrors the action's error type."""

    def __init__(self, message: str, *, error_type: str) -> None:
        super().__init__(message)
        self.error_type = error_type

    @property
    def retryable(self) -> bool:
        return self.error_type == "RetryableError"


REVOKE_STACK_NAME = "REVOKE_STACK_NAME"
REVOKE_TARGET_ACCESS_KEY_ID = "REVOKE_TARGET_ACCESS_KEY_ID"
REVOKE_TARGET_SECRET_ACCESS_KEY = "REVOKE_TARGET_SECRET_ACCESS_KEY"
REVOKE_TARGET_SESSION_TOKEN = "REVOKE_TARGET_SESSION_TOKEN"
DEFAULT_STACK_NAME = "RevokeSessionStack"
FUNCTION_NAME_OUTPUT = "RevokeSessionFunctionName"

_ERROR_CONSOLE = Console(stderr=True, soft_wrap=True)


@dataclass(frozen=True)
class GlobalOpts:
    stack: str
    pretty: bool


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}")


def _bootstrap_env() -> None:
    # Discover and load .env without overriding exported values.
    load_dotenv()


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _require_str(val: str | None, name: str, *, hint: str) -> str:
    v = (val or "").strip()
    if not v:
        raise UsageError(f"missing {name} ({hint})")
    return v


def _load_json_object(raw: str, *, name: str) -> dict[str, Any]:
    try:
        val = json.loads(raw)
    except json.JSONDecodeError as e:
        raise UsageError(f"invalid {name}: {e}") from e
    if not isinstance(val, dict):
        raise UsageError(f"invalid {name}: expected JSON object")
    return val


def _target_secrets() -> dict[str, str]:
    key_id = _require_str(
        os.environ.get(REVOKE_TARGET_ACCESS_KEY_ID),
        REVOKE_TARGET_ACCESS_KEY_ID,
        hint="access key id used to attach the revocation policy",
    )
    secret = _require_str(
        os.environ.get(REVOKE_TARGET_SECRET_ACCESS_KEY),
        REVOKE_TARGET_SECRET_ACCESS_KEY,
        hint="secret access key used to attach the revocation policy",
    )
    out = {"BASIC_USERNAME": key_id, "BASIC_PASSWORD": secret}
    token = _env_or_none(REVOKE_TARGET_SESSION_TOKEN)
    if token:
        out["AWS_SESSION_TOKEN"] = token
    return out


def _account_session() -> Any:
    profile = _env_or_none("AWS_PROFILE")
    region = _env_or_none("AWS_REGION", "AWS_DEFAULT_REGION")
    if not region:
        raise UsageError("missing AWS_REGION (region of the deployed stack)")
    return boto3.session.Session(profile_name=profile, region_name=region)


def _cf_outputs(session: Any, *, stack: str) -> list[dict[str, Any]]:
    cf = session.client("cloudformation")
    try:
        resp = cf.describe_stacks(StackName=stack)
    except Exception as e:
        raise OpError(f"cloudformation describe-stacks failed for stack {stack!r}: {e}") from e
    stacks = resp.get("Stacks") or []
    if not stacks:
        raise OpError(f"stack not found: {stack}")
    outputs = stacks[0].get("Outputs") or []
    if not isinstance(outputs, list):
        return []
    return [o for o in outputs if isinstance(o, dict)]


def _require_stack_output(session: Any, *, stack: str, key: str) -> str:
    for o in _cf_outputs(session, stack=stack):
        if str(o.get("OutputKey", "")).strip() == key:
            v = str(o.get("OutputValue", "")).strip()
            if v:
                return v
    raise OpError(f"missing CloudFormation output {key!r} on stack {stack!r}")


def _invoke_function(session: Any, *, function_name: str, event: dict[str, Any]) -> dict[str, Any]:
    client = session.client("lambda")
    try:
        resp = client.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=json.dumps(event).encode("utf-8"),
        )
    except Exception as e:
        raise OpError(f"lambda invoke failed for {function_name!r}: {e}") from e

    raw = resp["Payload"].read()
    try:
        body = json.loads(raw.decode("utf-8")) if raw else None
    except json.JSONDecodeError as e:
        raise OpError(f"invalid response payload from {function_name!r}: {e}") from e

    if resp.get("FunctionError"):
        body = body if isinstance(body, dict) else {}
        raise FunctionError(
            str(body.get("errorMessage") or "function error"),
            error_type=str(body.get("errorType") or ""),
        )
    if not isinstance(body, dict):
        raise OpError(f"unexpected response payload from {function_name!r}")
    return body


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")
