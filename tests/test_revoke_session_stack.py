import sys
from pathlib import Path

import pytest
from aws_cdk import App
from aws_cdk import assertions

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.revoke_session_stack import RevokeSessionStack


def _synth_template(monkeypatch, *, log_level: str | None = None, mode: str | None = None) -> dict:
    monkeypatch.chdir(ROOT)
    if log_level is None:
        monkeypatch.delenv("LOG_LEVEL", raising=False)
    else:
        monkeypatch.setenv("LOG_LEVEL", log_level)
    if mode is None:
        monkeypatch.delenv("DATA_RETENTION_MODE", raising=False)
    else:
        monkeypatch.setenv("DATA_RETENTION_MODE", mode)
    app = App()
    stack = RevokeSessionStack(app, "RevokeSessionTestStack", schema_version="2026-10-01")
    return assertions.Template.from_stack(stack).to_json()


def _resources(template: dict, resource_type: str) -> list[dict]:
    return [r for r in template["Resources"].values() if r.get("Type") == resource_type]


def test_function_runs_revoke_session_handler(monkeypatch):
    template = _synth_template(monkeypatch)
    functions = _resources(template, "AWS::Lambda::Function")

    assert len(functions) == 1
    props = functions[0]["Properties"]
    assert props["Handler"] == "revoke_session.handler"
    assert props["Runtime"] == "python3.12"
    assert props["Timeout"] == 30
    assert props["Environment"]["Variables"] == {
        "SCHEMA_VERSION": "2026-10-01",
        "LOG_LEVEL": "info",
    }


def test_execution_role_has_no_iam_permissions(monkeypatch):
    template = _synth_template(monkeypatch)

    for policy in _resources(template, "AWS::IAM::Policy"):
        for stmt in policy["Properties"]["PolicyDocument"]["Statement"]:
            actions = stmt.get("Action", [])
            if isinstance(actions, str):
                actions = [actions]
            assert not [a for a in actions if a.startswith("iam:")]

    roles = _resources(template, "AWS::IAM::Role")
    assert len(roles) == 1
    assert "Policies" not in roles[0]["Properties"]


def test_log_group_retention_and_error_alarm(monkeypatch):
    template = _synth_template(monkeypatch)

    log_groups = _resources(template, "AWS::Logs::LogGroup")
    assert len(log_groups) == 1
    assert log_groups[0]["Properties"]["RetentionInDays"] == 30
    assert log_groups[0]["DeletionPolicy"] == "Delete"

    filters = _resources(template, "AWS::Logs::MetricFilter")
    assert len(filters) == 1
    assert "$.level" in filters[0]["Properties"]["FilterPattern"]
    assert len(_resources(template, "AWS::CloudWatch::Alarm")) == 1


def test_retain_mode_keeps_log_group(monkeypatch):
    template = _synth_template(monkeypatch, mode="retain")
    log_groups = _resources(template, "AWS::Logs::LogGroup")
    assert log_groups[0]["DeletionPolicy"] == "Retain"


def test_outputs_expose_function_name(monkeypatch):
    template = _synth_template(monkeypatch, log_level="debug")
    assert "RevokeSessionFunctionName" in template["Outputs"]
    assert "RevokeSessionFunctionArn" in template["Outputs"]

    functions = _resources(template, "AWS::Lambda::Function")
    assert functions[0]["Properties"]["Environment"]["Variables"]["LOG_LEVEL"] == "debug"


def test_invalid_settings_are_rejected(monkeypatch):
    with pytest.raises(ValueError, match="LOG_LEVEL"):
        _synth_template(monkeypatch, log_level="verbose")
    with pytest.raises(ValueError, match="DATA_RETENTION_MODE"):
        _synth_template(monkeypatch, mode="archive")
