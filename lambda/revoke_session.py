import json
import os
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError
from param_templates import resolve_templates

SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")

POLICY_NAME = "AWSRevokeOlderSessions"
POLICY_VERSION = "2012-10-17"
TOKEN_ISSUE_TIME_KEY = "aws:TokenIssueTime"

# (access key id, secret access key) secret names, in lookup order.
_CREDENTIAL_SECRET_PAIRS = (
    ("BASIC_USERNAME", "BASIC_PASSWORD"),
    ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
)
_SESSION_TOKEN_SECRET = "AWS_SESSION_TOKEN"

_LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}

_NOT_FOUND_CODES = {"NoSuchEntity"}
_MALFORMED_CODES = {"MalformedPolicyDocument"}
_ACCESS_DENIED_CODES = {"Unauthorized", "AccessDenied", "UnauthorizedOperation"}
_RETRYABLE_CODES = {"Throttling", "ServiceUnavailable"}


class RevocationError(Exception):
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return "retryable" if self.retryable else "fatal"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


class RetryableError(RevocationError):
    """Transient failure; the job framework should re-run the action."""

    retryable = True


class FatalError(RevocationError):
    """Permanent failure; retrying the job cannot succeed."""

    retryable = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _log(step: str, level: str = "info", **fields: Any) -> None:
    if _LEVELS.get(level, 20) < _LEVELS.get(LOG_LEVEL.strip().lower(), 20):
        return
    record = {
        "event": f"aws_revoke_session.{step}",
        "level": level,
        "schema_version": SCHEMA_VERSION,
        "ts": _iso(_now()),
    }
    record.update(fields)
    print(json.dumps(record, separators=(",", ":"), sort_keys=True, default=str))


def _parse_timestamp(raw: str) -> datetime:
    text = raw.strip()
    # fromisoformat only accepts a trailing "Z" on newer interpreters.
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_conditions(extra_conditions: dict[str, Any] | str) -> dict[str, Any]:
    if isinstance(extra_conditions, str):
        try:
            parsed = json.loads(extra_conditions)
        except json.JSONDecodeError as e:
            raise FatalError(f"Invalid conditions JSON: {e}") from e
    else:
        parsed = extra_conditions

    if not isinstance(parsed, dict):
        raise FatalError("Invalid conditions JSON: expected an object of condition operators")
    for operator, block in parsed.items():
        if not isinstance(block, dict):
            raise FatalError(
                f"Invalid conditions JSON: condition operator {operator} must map keys to values"
            )
    return parsed


def _same_instant(value: Any, cutoff_iso: str) -> bool:
    if not isinstance(value, str):
        return False
    try:
        return _parse_timestamp(value) == _parse_timestamp(cutoff_iso)
    except ValueError:
        return False


def _merge_issue_time_block(block: dict[str, Any], cutoff_iso: str) -> dict[str, Any]:
    # Condition keys are case-insensitive in IAM, so every spelling of the
    # issue-time key must carry the cutoff instant.
    merged: dict[str, Any] = {}
    for key, value in block.items():
        if key.lower() != TOKEN_ISSUE_TIME_KEY.lower():
            merged[key] = value
            continue
        if not _same_instant(value, cutoff_iso):
            raise FatalError(
                f"Invalid conditions JSON: {TOKEN_ISSUE_TIME_KEY} under DateLessThan is reserved"
            )
    return merged


def build_revocation_policy(
    cutoff: datetime, extra_conditions: dict[str, Any] | str | None = None
) -> str:
    cutoff_iso = _iso(cutoff)
    condition: dict[str, dict[str, Any]] = {
        "DateLessThan": {TOKEN_ISSUE_TIME_KEY: cutoff_iso},
    }

    if extra_conditions:
        for operator, block in _load_conditions(extra_conditions).items():
            if operator.lower() == "datelessthan":
                block = _merge_issue_time_block(block, cutoff_iso)
                operator = "DateLessThan"
            condition[operator] = {**condition.get(operator, {}), **block}

    policy = {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Deny",
                "Action": ["*"],
                "Resource": ["*"],
                "Condition": condition,
            }
        ],
    }
    return json.dumps(policy)


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_inputs(params: dict[str, Any]) -> None:
    if _is_blank(params.get("roleName")):
        raise FatalError("Invalid or missing roleName parameter")
    if _is_blank(params.get("region")):
        raise FatalError("Invalid or missing region parameter")

    token_issue_time = params.get("tokenIssueTime")
    if token_issue_time in (None, ""):
        return
    if not isinstance(token_issue_time, str):
        raise FatalError(f"Invalid tokenIssueTime parameter: {token_issue_time!r}")
    try:
        _parse_timestamp(token_issue_time)
    except ValueError as e:
        raise FatalError(f"Invalid tokenIssueTime parameter: {token_issue_time}") from e


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        code = str((exc.response.get("Error") or {}).get("Code") or "")
    else:
        code = type(exc).__name__
    if code.endswith("Exception"):
        code = code[: -len("Exception")]
    return code


def _error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        msg = str((exc.response.get("Error") or {}).get("Message") or "")
        if msg:
            return msg
    return str(exc)


def classify_aws_error(exc: Exception, role_name: str) -> RevocationError:
    code = _error_code(exc)
    msg = _error_message(exc)
    if code in _NOT_FOUND_CODES:
        return FatalError(f"Role not found: {role_name}")
    if code in _MALFORMED_CODES:
        return FatalError(f"Invalid policy document: {msg}")
    if code in _ACCESS_DENIED_CODES:
        return FatalError(f"Access denied: {msg}")
    if code in _RETRYABLE_CODES:
        return RetryableError(f"AWS service temporarily unavailable: {msg}")
    return FatalError(f"Failed to apply policy: {msg}")


def apply_revocation_policy(client: Any, role_name: str, policy_document: str) -> bool:
    try:
        client.put_role_policy(
            RoleName=role_name,
            PolicyName=POLICY_NAME,
            PolicyDocument=policy_document,
        )
    except Exception as e:
        classified = classify_aws_error(e, role_name)
        _log(
            "apply_failed",
            "warn",
            role_name=role_name,
            error_code=_error_code(e),
            retryable=classified.retryable,
        )
        raise classified from e
    return True


def _credentials(secrets: dict[str, Any]) -> dict[str, str] | None:
    for key_id_name, secret_name in _CREDENTIAL_SECRET_PAIRS:
        key_id = str(secrets.get(key_id_name) or "").strip()
        secret = str(secrets.get(secret_name) or "").strip()
        if key_id and secret:
            creds = {"aws_access_key_id": key_id, "aws_secret_access_key": secret}
            token = str(secrets.get(_SESSION_TOKEN_SECRET) or "").strip()
            if token:
                creds["aws_session_token"] = token
            return creds
    return None


def _iam(region: str, credentials: dict[str, str]):
    return boto3.client("iam", region_name=region, **credentials)


def invoke(params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    _log("start")
    context = context or {}
    job_data = context.get("data") or {}

    resolved, template_errors = resolve_templates(params or {}, job_data)
    if template_errors:
        _log("template_resolution", "warn", errors=template_errors)

    try:
        validate_inputs(resolved)

        role_name = resolved["roleName"]
        region = resolved["region"]
        _log("processing", role_name=role_name, region=region)

        credentials = _credentials(context.get("secrets") or {})
        if credentials is None:
            raise FatalError("Missing required credentials in secrets")

        token_issue_time = resolved.get("tokenIssueTime")
        cutoff = _parse_timestamp(token_issue_time) if token_issue_time else _now()
        cutoff_iso = _iso(cutoff)
        _log("revoking", role_name=role_name, token_issue_time=cutoff_iso)

        policy_document = build_revocation_policy(cutoff, resolved.get("conditions"))
        _log("policy_built", "debug", role_name=role_name, policy_document=policy_document)

        apply_revocation_policy(_iam(region, credentials), role_name, policy_document)

        result = {
            "roleName": role_name,
            "policyName": POLICY_NAME,
            "tokenIssueTime": cutoff_iso,
            "applied": True,
            "appliedAt": _iso(_now()),
        }
        _log("applied", role_name=role_name, policy_name=POLICY_NAME)
        return result
    except RevocationError as e:
        _log("failed", "error", message=e.message, retryable=e.retryable)
        raise
    except Exception as e:
        _log("failed", "error", message=str(e), retryable=False)
        raise FatalError(f"Unexpected error: {e}") from e


def error(params: dict[str, Any], _context: dict[str, Any] | None = None) -> dict[str, Any]:
    err = (params or {}).get("error")
    if isinstance(err, BaseException):
        _log("error_handler", "error", message=str(err))
        raise err
    if isinstance(err, dict):
        message = str(err.get("message") or "Unknown error")
        _log("error_handler", "error", message=message)
        if err.get("retryable") is True:
            raise RetryableError(message)
        raise FatalError(message)
    if isinstance(err, str) and err.strip():
        _log("error_handler", "error", message=err)
        raise FatalError(err)
    _log("error_handler", "error", message=None)
    raise FatalError("Error handler invoked without an error")


def halt(params: dict[str, Any], _context: dict[str, Any] | None = None) -> dict[str, Any]:
    params = params or {}
    reason = params.get("reason")
    _log("halt", reason=reason)
    return {
        "roleName": params.get("roleName") or "unknown",
        "reason": reason or "unknown",
        "haltedAt": _iso(_now()),
        "cleanupCompleted": True,
    }


_OPS = {"invoke": invoke, "error": error, "halt": halt}


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    event = event or {}
    op = str(event.get("op") or "invoke").strip().lower()
    fn = _OPS.get(op)
    if fn is None:
        raise FatalError(f"Unsupported op: {op}")
    return fn(event.get("params") or {}, event.get("context") or {})
