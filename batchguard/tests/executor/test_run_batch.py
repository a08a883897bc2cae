import pytest

from batchguard.executor.dispatch import Dispatcher
from batchguard.executor.dom_applier import DomApplier
from batchguard.executor.errors import AdapterError, BatchValidationError, ErrorCode
from batchguard.executor.executor import run_batch
from batchguard.executor.gates import PermissionDecision, PermissionGate, scope_for
from batchguard.executor.identity import compute_batch_hash
from batchguard.executor.ingress import ingest
from batchguard.executor.operations_schema import OperationKind, WindowCreateParams, validate_batch
from batchguard.executor.sanitizer import sanitize_strict
from batchguard.executor.windows import WindowManager


@pytest.fixture
def windows():
    return WindowManager()


@pytest.fixture
def dom(windows):
    return DomApplier(windows)


def _notepad_batch(html="<p>Start typing</p>"):
    return [
        {"op": "window.create", "params": {"id": "win-notes", "title": "Notepad", "width": 720, "height": 480}},
        {"op": "dom.set", "params": {"windowId": "win-notes", "target": "#root", "html": html}},
    ]


def test_end_to_end_ingest_and_apply(windows, dom):
    ingress = ingest(_notepad_batch('<p style="color:red">Start typing</p>'), fallback_trace_id="trace-1")

    outcome = run_batch(ingress.batch, windows=windows, dom=dom, ops_hash=ingress.ops_hash, trace_id=ingress.trace_id)

    assert outcome.success is True
    assert outcome.applied == 2
    assert outcome.skipped_duplicates == 0
    assert outcome.errors == []
    assert outcome.ops_hash == ingress.ops_hash
    assert outcome.trace_id == "trace-1"
    assert outcome.batch_id.startswith("batch-")
    assert windows.get_record("win-notes").inner_html("#root") == "<p>Start typing</p>"


def test_event_handler_attribute_is_rejected_at_ingest():
    with pytest.raises(BatchValidationError) as excinfo:
        ingest(_notepad_batch('<p onclick="x()">Start typing</p>'))

    assert excinfo.value.pointer == "/1/params/html"


def test_plan_validate_hash_gate_sanitize_apply_and_replay(windows, dom):
    plan = {
        "summary": "x",
        "batch": [
            {"op": "window.create", "params": {"title": "T"}},
            {"op": "dom.set", "params": {"windowId": "w1", "target": "#root", "html": "<p>Hi</p>"}},
        ],
    }
    windows.create(WindowCreateParams.model_validate({"id": "w1", "title": "T"}))
    gate = PermissionGate()

    first = ingest(plan)
    replay = ingest(plan)

    assert first.plan.summary == "x"
    assert first.ops_hash == replay.ops_hash
    for env in first.batch:
        assert gate.check(env.op, env.params.to_wire()) is PermissionDecision.GRANTED
        assert scope_for(env.op) in {"window", "dom"}
    assert sanitize_strict(first.batch[1].params.html) == "<p>Hi</p>"

    applied = run_batch(first.batch, windows=windows, dom=dom)
    replayed = run_batch(replay.batch, windows=windows, dom=dom)

    assert (applied.applied, applied.skipped_duplicates) == (2, 0)
    assert (replayed.applied, replayed.skipped_duplicates) == (1, 1)
    assert dom.apply(first.batch[1].params).skipped_duplicates == 1
    assert windows.get_record("w1").inner_html("#root") == "<p>Hi</p>"


def test_reapplying_same_batch_skips_duplicate_dom(windows, dom):
    batch = ingest(_notepad_batch()).batch

    run_batch(batch, windows=windows, dom=dom)
    outcome = run_batch(batch, windows=windows, dom=dom)

    assert outcome.skipped_duplicates == 1
    assert outcome.applied == 1  # the idempotent window.create
    assert outcome.success is True


def test_sanitize_opt_out_is_denied_by_policy(windows, dom):
    batch = validate_batch(
        _notepad_batch()[:1]
        + [{"op": "dom.set", "params": {"windowId": "win-notes", "target": "#root", "html": "<p>x</p>", "sanitize": False}}]
    )

    outcome = run_batch(batch, windows=windows, dom=dom)

    assert outcome.success is False
    assert outcome.denied_by_policy == 1
    assert outcome.applied == 1
    assert [(e.op_index, e.code) for e in outcome.errors] == [(1, ErrorCode.PERMISSION_DENIED.value)]
    assert windows.get_record("win-notes").inner_html("#root") == ""


def test_ops_without_handler_are_deferred(windows, dom):
    batch = validate_batch(
        [
            {"op": "state.set", "params": {"scope": "workspace", "key": "theme", "value": "dark"}},
            {"op": "api.call", "params": {"url": "https://api.example.com/x"}},
            {"op": "txn.cancel", "params": {}},
        ]
    )

    outcome = run_batch(batch, windows=windows, dom=dom)

    assert outcome.deferred == 3
    assert outcome.applied == 0
    assert outcome.success is True


def test_dispatcher_handles_delegated_ops(windows, dom):
    seen = []
    dispatcher = Dispatcher({OperationKind.STATE_SET: seen.append})
    batch = validate_batch([{"op": "state.set", "params": {"scope": "global", "key": "k", "value": 1}}])

    outcome = run_batch(batch, windows=windows, dom=dom, dispatcher=dispatcher)

    assert outcome.applied == 1
    assert outcome.deferred == 0
    assert seen[0].params.key == "k"


def test_test_mode_handlers_take_priority():
    calls = []
    dispatcher = Dispatcher(
        {"state.get": lambda env: calls.append("real")},
        {"state.get": lambda env: calls.append("stub")},
        test_mode=True,
    )
    env = validate_batch([{"op": "state.get", "params": {"scope": "global", "key": "k"}}])[0]

    dispatcher.dispatch(env)

    assert calls == ["stub"]


def test_handler_errors_become_reports(windows, dom):
    def render(envelope):
        raise AdapterError(ErrorCode.COMPONENT_UNKNOWN, f"Unknown component: {envelope.params.type}")

    dispatcher = Dispatcher({"component.render": render})
    batch = validate_batch(
        [{"op": "component.render", "params": {"windowId": "w", "target": "#root", "type": "data.table"}}]
    )

    outcome = run_batch(batch, windows=windows, dom=dom, dispatcher=dispatcher)

    assert outcome.errors[0].code == "Adapter.ComponentUnknown"
    assert outcome.errors[0].message == "Unknown component: data.table"


def test_failures_are_reported_per_envelope(windows, dom):
    batch = validate_batch(
        [
            {"op": "dom.set", "params": {"windowId": "ghost", "target": "#root", "html": "<p>x</p>"}},
            {"op": "window.move", "params": {"id": "ghost", "x": 1, "y": 1}},
            {"op": "window.create", "params": {"id": "real", "title": "Real"}},
        ]
    )

    outcome = run_batch(batch, windows=windows, dom=dom)

    assert [(e.op_index, e.code) for e in outcome.errors] == [
        (0, ErrorCode.WINDOW_NOT_FOUND.value),
        (1, ErrorCode.WINDOW_NOT_FOUND.value),
    ]
    assert outcome.applied == 1
    assert windows.exists("real")


def test_allow_partial_false_stops_at_first_failure(windows, dom):
    batch = validate_batch(
        [
            {"op": "dom.set", "params": {"windowId": "ghost", "target": "#root", "html": "<p>x</p>"}},
            {"op": "window.create", "params": {"id": "late", "title": "Late"}},
        ]
    )

    outcome = run_batch(batch, windows=windows, dom=dom, allow_partial=False)

    assert len(outcome.errors) == 1
    assert outcome.applied == 0
    assert not windows.exists("late")


def test_window_close_forgets_dom_dedup(windows, dom):
    run_batch(ingest(_notepad_batch()).batch, windows=windows, dom=dom)
    run_batch(validate_batch([{"op": "window.close", "params": {"id": "win-notes"}}]), windows=windows, dom=dom)

    outcome = run_batch(ingest(_notepad_batch()).batch, windows=windows, dom=dom)

    assert outcome.applied == 2
    assert outcome.skipped_duplicates == 0


def test_dom_op_kind_sets_default_mode(windows, dom):
    batch = validate_batch(
        _notepad_batch("<li>one</li>")
        + [{"op": "dom.append", "params": {"windowId": "win-notes", "target": "#root", "html": "<li>two</li>"}}]
    )

    run_batch(batch, windows=windows, dom=dom)

    assert windows.get_record("win-notes").inner_html("#root") == "<li>one</li><li>two</li>"


def test_outcome_defaults_hash_and_emits_event(windows, dom, monkeypatch):
    events = []
    monkeypatch.setattr(
        "batchguard.executor.executor.log_event",
        lambda event, request_id, payload=None: events.append((event, request_id, payload)),
    )
    batch = validate_batch(_notepad_batch())

    outcome = run_batch(batch, windows=windows, dom=dom, request_id="req-1")

    assert outcome.ops_hash == compute_batch_hash(batch)
    assert events[0][0] == "batch.applied"
    assert events[0][1] == "req-1"
    assert events[0][2]["outcome"]["applied"] == 2
