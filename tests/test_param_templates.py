import importlib
import sys


def _load_module():
    if "lambda" not in sys.path:
        sys.path.insert(0, "lambda")
    import param_templates as module

    return importlib.reload(module)


DATA = {
    "user": {"email": "ops@example.com", "roles": ["Admin", "ReadOnly"]},
    "incident": {"id": 7, "open": True, "window": {"start": "2025-01-01T00:00:00Z"}},
    "conditions": {"StringEquals": {"aws:PrincipalTag/team": "ops"}},
}


def test_whole_placeholder_keeps_raw_value():
    m = _load_module()
    out, errors = m.resolve_templates(
        {"conditions": "{$.conditions}", "id": "{$.incident.id}", "role": "{$.user.roles[1]}"},
        DATA,
    )
    assert errors == []
    assert out == {
        "conditions": {"StringEquals": {"aws:PrincipalTag/team": "ops"}},
        "id": 7,
        "role": "ReadOnly",
    }


def test_embedded_placeholders_are_interpolated():
    m = _load_module()
    out, errors = m.resolve_templates(
        "incident-{$.incident.id} open={$.incident.open} roles={$.user.roles}",
        DATA,
    )
    assert errors == []
    assert out == 'incident-7 open=true roles=["Admin","ReadOnly"]'


def test_nested_structures_are_walked_without_mutation():
    m = _load_module()
    params = {"outer": [{"start": "{$.incident.window.start}"}, "plain", 3]}
    out, errors = m.resolve_templates(params, DATA)

    assert errors == []
    assert out == {"outer": [{"start": "2025-01-01T00:00:00Z"}, "plain", 3]}
    assert params == {"outer": [{"start": "{$.incident.window.start}"}, "plain", 3]}


def test_unresolved_placeholders_become_empty_and_are_reported():
    m = _load_module()
    out, errors = m.resolve_templates(
        {"a": "{$.missing.path}", "b": "x-{$.user.roles[5]}-y", "c": "{$.user.email.local}"},
        DATA,
    )
    assert out == {"a": "", "b": "x--y", "c": ""}
    assert errors == [
        "failed to resolve $.missing.path",
        "failed to resolve $.user.roles[5]",
        "failed to resolve $.user.email.local",
    ]


def test_strings_without_placeholders_pass_through():
    m = _load_module()
    out, errors = m.resolve_templates({"roleName": "{not a template}", "n": None}, None)
    assert errors == []
    assert out == {"roleName": "{not a template}", "n": None}
