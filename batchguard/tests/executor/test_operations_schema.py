import pytest
from pydantic import ValidationError

from batchguard.executor.errors import BatchValidationError
from batchguard.executor.operations_schema import (
    MAX_OPS_PER_BATCH,
    OPERATION_SCHEMAS,
    OperationKind,
    is_batch,
    is_plan,
    join_pointer,
    validate_batch,
    validate_plan,
)


def _create(title="Notes", **params):
    return {"op": "window.create", "params": {"title": title, **params}}


def _dom_set(html, window_id="win-1", target="#root", **extra):
    return {"op": "dom.set", "params": {"windowId": window_id, "target": target, "html": html, **extra}}


def _pointer_of(raw):
    with pytest.raises(BatchValidationError) as excinfo:
        validate_batch(raw)
    return excinfo.value.pointer


def test_every_operation_kind_has_a_schema():
    assert set(OPERATION_SCHEMAS) == set(OperationKind)


def test_validate_batch_accepts_camel_envelopes():
    batch = validate_batch(
        [
            {**_create(id="win-1", width=640, height=480), "idempotencyKey": "k-1", "traceId": "t-1"},
            _dom_set("<p>hello</p>"),
        ]
    )

    assert isinstance(batch, tuple)
    assert batch[0].op is OperationKind.WINDOW_CREATE
    assert batch[0].params.title == "Notes"
    assert batch[0].idempotency_key == "k-1"
    assert batch[0].trace_id == "t-1"
    assert batch[1].params.html == "<p>hello</p>"


def test_plan_entry_snake_case_is_normalized():
    batch = validate_batch(
        [
            {
                "type": "command",
                "op": "dom.append",
                "window_id": "win-9",
                "idempotency_key": "idem-1",
                "trace_id": "trace-1",
                "txn_id": "txn-1",
                "params": {"windowId": "win-9", "target": "#root", "html": "<li>x</li>"},
            }
        ]
    )

    env = batch[0]
    assert env.window_id == "win-9"
    assert env.idempotency_key == "idem-1"
    assert env.trace_id == "trace-1"
    assert env.txn_id == "txn-1"


def test_envelope_window_id_falls_back_to_params():
    batch = validate_batch([_dom_set("<p>x</p>", window_id="win-42")])

    assert batch[0].window_id == "win-42"


def test_null_optional_fields_are_treated_as_absent():
    batch = validate_batch([_create(x=None, zIndex=None)])

    assert batch[0].params.x is None
    assert batch[0].params.z_index is None


def test_state_watch_mode_defaults_to_replace():
    batch = validate_batch(
        [{"op": "state.watch", "params": {"scope": "window", "key": "todos", "selector": "#list", "windowId": "w"}}]
    )

    assert batch[0].params.mode == "replace"


@pytest.mark.parametrize(
    "entry, pointer",
    [
        (_create(width=80), "/0/params/width"),
        (_create(x="10"), "/0/params/x"),
        (_create(x=float("nan")), "/0/params/x"),
        (_create(title=""), "/0/params/title"),
        (_create(bogus=True), "/0/params/bogus"),
        ({"op": "window.explode", "params": {}}, "/0/op"),
        ({"op": "window.focus", "params": []}, "/0/params"),
        (_dom_set("<p>x</p>", mode="prepend"), "/0/params/mode"),
        ({"op": "api.call", "params": {"url": "file:///etc/passwd"}}, "/0/params/url"),
        ({"op": "state.set", "params": {"scope": "disk", "key": "k"}}, "/0/params/scope"),
        ({"op": "state.set", "params": {"scope": "global", "key": "k", "ttlMs": 0}}, "/0/params/ttlMs"),
    ],
)
def test_validate_batch_points_at_offending_field(entry, pointer):
    assert _pointer_of([entry]) == pointer


def test_unknown_envelope_key_is_rejected():
    entry = {**_create(), "priority": "high"}

    assert _pointer_of([entry]) == "/0/priority"


@pytest.mark.parametrize(
    "html",
    [
        "<script>alert(1)</script>",
        "<div onclick=\"steal()\">x</div>",
        "<a href=\"javascript:alert(1)\">x</a>",
        "<STYLE>body{}</STYLE>",
        "<iframe src=\"https://example.com\"></iframe>",
        "<form action=\"/x\"></form>",
    ],
)
def test_dangerous_html_is_rejected_at_ingress(html):
    with pytest.raises(BatchValidationError) as excinfo:
        validate_batch([_create(id="win-1"), _dom_set(html)])

    assert excinfo.value.pointer == "/1/params/html"
    assert "disallowed content" in excinfo.value.message


def test_all_issues_are_collected_and_first_sets_pointer():
    with pytest.raises(BatchValidationError) as excinfo:
        validate_batch([_create(width=10), _create(title="")])

    pointers = [issue["pointer"] for issue in excinfo.value.issues]
    assert excinfo.value.pointer == "/0/params/width"
    assert "/1/params/title" in pointers


def test_batch_length_limit():
    entries = [_create(title=f"w{i}") for i in range(MAX_OPS_PER_BATCH + 1)]

    assert _pointer_of(entries) == "/batch"
    assert len(validate_batch(entries[:MAX_OPS_PER_BATCH])) == MAX_OPS_PER_BATCH


def test_single_html_payload_limit():
    assert _pointer_of([_dom_set("a" * (64 * 1024 + 1))]) == "/0/params/html"
    assert validate_batch([_dom_set("a" * (64 * 1024))])


def test_total_html_limit_across_batch():
    entries = [_dom_set("a" * 50_000, target=f"#t{i}") for i in range(3)]

    with pytest.raises(BatchValidationError) as excinfo:
        validate_batch(entries)

    assert excinfo.value.pointer == "/batch"
    assert "128KB" in excinfo.value.message


@pytest.mark.parametrize("raw", [{"op": "window.create"}, "[]", None, 3])
def test_non_array_batch_is_rejected(raw):
    assert _pointer_of(raw) == "/"


def test_empty_batch_is_rejected():
    assert _pointer_of([]) == "/batch"


def test_api_call_allows_web_and_intent_urls():
    batch = validate_batch(
        [
            {"op": "api.call", "params": {"url": "https://api.example.com/items", "method": "POST"}},
            {"op": "api.call", "params": {"url": "ui://intent", "body": {"text": "open notes"}}},
            {"op": "api.call", "params": {"url": "mailto:team@example.com"}},
        ]
    )

    assert batch[0].params.method == "POST"
    assert batch[1].params.method == "GET"


def test_envelopes_are_immutable():
    env = validate_batch([_create()])[0]

    with pytest.raises(ValidationError):
        env.window_id = "other"


def test_to_wire_uses_camel_case_and_drops_absent_fields():
    env = validate_batch([_dom_set("<p>x</p>")])[0]

    wire = env.to_wire()
    assert wire == {
        "op": "dom.set",
        "windowId": "win-1",
        "params": {"windowId": "win-1", "target": "#root", "html": "<p>x</p>"},
    }


def test_validate_plan_normalizes_risks_and_hints():
    plan = validate_plan(
        {
            "summary": "Build a notepad",
            "risks": "none",
            "batch": [_create(id="win-1")],
            "actor_hints": ["  keep it small ", "use #root"],
        }
    )

    assert plan.risks == ["none"]
    assert plan.actor_hints == ["keep it small", "use #root"]
    assert plan.batch[0].params.id == "win-1"


def test_validate_plan_points_into_nested_batch():
    with pytest.raises(BatchValidationError) as excinfo:
        validate_plan({"summary": "x", "batch": [_create(title="")]})

    assert excinfo.value.pointer == "/batch/0/params/title"


def test_validate_plan_rejects_too_many_hints():
    with pytest.raises(BatchValidationError) as excinfo:
        validate_plan({"summary": "x", "batch": [_create()], "actor_hints": [f"h{i}" for i in range(21)]})

    assert excinfo.value.pointer == "/actor_hints"


def test_join_pointer_escapes_segments():
    assert join_pointer("", "a/b", "c~d", 3) == "/a~1b/c~0d/3"


@pytest.mark.parametrize(
    "raw, batch_ok, plan_ok",
    [
        ([_create()], True, False),
        ({"summary": "Notes", "batch": [_create()]}, False, True),
        ([], False, False),
        ([_dom_set("<script>alert(1)</script>")], False, False),
        ({"summary": "", "batch": [_create()]}, False, False),
        ("not json", False, False),
    ],
)
def test_shape_guards(raw, batch_ok, plan_ok):
    assert is_batch(raw) is batch_ok
    assert is_plan(raw) is plan_ok
