import json

import pytest

from batchguard import config, logging_utils
from batchguard.executor.operations_schema import validate_batch
from batchguard.logging_utils import log_event, sanitize_payload, summarize_batch


@pytest.mark.parametrize("raw, expected", [("0", False), ("off", False), ("1", True), ("yes", True)])
def test_dom_dedupe_flag(monkeypatch, raw, expected):
    monkeypatch.setenv("BATCHGUARD_DOM_DEDUPE", raw)

    assert config.dom_dedupe_enabled() is expected


def test_dom_dedupe_defaults_on(monkeypatch):
    monkeypatch.delenv("BATCHGUARD_DOM_DEDUPE", raising=False)

    assert config.dom_dedupe_enabled() is True


def test_desktop_size_reads_env(monkeypatch):
    monkeypatch.setenv("BATCHGUARD_DESKTOP_WIDTH", "1280")
    monkeypatch.delenv("BATCHGUARD_DESKTOP_HEIGHT", raising=False)

    assert config.desktop_size() == (1280, config.DEFAULT_DESKTOP_HEIGHT)


def test_resolve_host_port_switches_on_test_mode(monkeypatch):
    monkeypatch.delenv("PYTEST_CURRENT_TEST", raising=False)
    monkeypatch.delenv("BATCHGUARD_TEST_MODE", raising=False)
    assert config.resolve_host_port() == (config.DEV_HOST, config.DEV_PORT)

    monkeypatch.setenv("BATCHGUARD_TEST_MODE", "1")
    assert config.resolve_host_port() == (config.TEST_HOST, config.TEST_PORT)
    assert config.resolve_host_port("0.0.0.0", 9000) == ("0.0.0.0", 9000)


def test_sanitize_payload_redacts_html_bodies():
    payload = {"params": {"html": "<p>secret</p>", "target": "#root"}, "note": "x" * 2100}

    cleaned = sanitize_payload(payload)

    assert cleaned["params"] == {"html": "<redacted:html 13 chars>", "target": "#root"}
    assert cleaned["note"].endswith("<truncated 100 chars>")


def test_summarize_batch_lists_ops_without_html():
    batch = validate_batch(
        [{"op": "dom.set", "params": {"windowId": "w1", "target": "#root", "html": "<p>Hi</p>"}}]
    )

    summary = summarize_batch(batch)

    assert summary["total_ops"] == 1
    assert summary["ops_preview"][0]["op"] == "dom.set"
    assert "<p>Hi</p>" not in json.dumps(summary)


def test_log_event_writes_json(monkeypatch):
    lines = []
    monkeypatch.setattr(logging_utils.event_logger, "info", lines.append)

    log_event("batch.validated", "req-9", {"html": "<b>x</b>"})

    assert json.loads(lines[-1]) == {"event": "batch.validated", "request_id": "req-9", "html": "<redacted:html 8 chars>"}
