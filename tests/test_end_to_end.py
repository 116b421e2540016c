"""Scenarios run against a real local HTTP service."""

import time
from pathlib import Path

import pytest

from api_scenario.runner import ErrorKind, ExecutionConfig, ScenarioExecutor, StepStatus
from api_scenario.scenario import parse_scenario, parse_scenario_yaml

SAMPLES = Path(__file__).resolve().parent.parent / "scenarios"

CREATE_AND_FETCH = """
name: create and fetch
vars:
  item_name: widget
steps:
  - id: create
    name: create
    request:
      method: POST
      url: /items
      body: {name: "{{ item_name }}"}
    expect:
      status: 201
    save:
      item_id: id
  - name: fetch
    request:
      method: GET
      url: /items/{{ item_id }}
    expect:
      status: 200
      json:
        id: "{{ steps.create.outputs.id }}"
        name: "{{ item_name }}"
"""


def _run(text: str, base_url: str):
    executor = ScenarioExecutor(config=ExecutionConfig(base_url=base_url, timeout=5))
    return executor.run_sync(parse_scenario_yaml(text))


def _single_step(expect: str, url: str, method: str = "GET") -> str:
    return f"""
name: single
steps:
  - name: only
    request: {{method: {method}, url: "{url}"}}
    expect:
{expect}
"""


def test_create_then_fetch_passes(api_server, base_url) -> None:
    result = _run(CREATE_AND_FETCH, base_url)

    assert result.success, result.to_dict()
    assert [path for _, path, _ in api_server.requests_seen] == ["/items", "/items/item-1"]


def test_wrong_echo_is_a_json_mismatch(api_server, base_url) -> None:
    api_server.wrong_id = True
    result = _run(CREATE_AND_FETCH, base_url)

    assert not result.success
    step = result.steps[1]
    assert step.error.kind == ErrorKind.ASSERTION_FAILURE
    (mismatch,) = step.mismatches
    assert mismatch.path == "id"
    assert mismatch.expected == "item-1"
    assert mismatch.actual == "someone-else"


def test_unexpected_status_gives_one_mismatch(base_url) -> None:
    result = _run(_single_step("      status: 200", "/status/201"), base_url)

    (mismatch,) = result.steps[0].mismatches
    assert str(mismatch) == "status: expected 200, got 201"


def test_contains_on_plain_text(base_url) -> None:
    text = _single_step("      status: 200\n      contains: [plain world]", "/text")
    assert _run(text, base_url).success


def test_contains_on_text_without_charset_is_utf8(base_url) -> None:
    text = _single_step("      status: 200\n      contains: ['café', 'ünïcode']", "/text/utf8")
    result = _run(text, base_url)

    assert result.success, result.to_dict()
    assert result.steps[0].response["body"] == "café ünïcode"


@pytest.mark.parametrize("path", ["/events", "/events/crlf", "/events/chunked"])
def test_event_stream_matches_and_saves(base_url, path: str) -> None:
    text = f"""
name: stream
steps:
  - id: watch
    name: watch
    request: {{method: GET, url: "{path}"}}
    expect:
      status: 200
      sse:
        timeout: 5s
        events:
          - event: created
            data: {{id: item-1}}
            save: {{created_name: name}}
          - event: done
            data_exists: [ok]
  - name: use
    request: {{method: GET, url: "/status/200?name={{{{ created_name }}}}&id={{{{ steps.watch.outputs.created.0.id }}}}"}}
    expect: {{status: 200}}
"""
    result = _run(text, base_url)

    assert result.success, result.to_dict()
    assert result.steps[0].response["body"]["created"] == [{"id": "item-1", "name": "gadget"}]


def test_silent_stream_times_out_quickly(base_url) -> None:
    text = _single_step(
        "      sse:\n        timeout: 0.5\n        events:\n          - event: created",
        "/events/silent",
    )
    started = time.monotonic()
    result = _run(text, base_url)

    assert time.monotonic() - started < 4
    error = result.steps[0].error
    assert error.kind == ErrorKind.SSE_TIMEOUT
    assert error.details["index"] == 0
    assert error.details["matcher"] == "(event='created')"


def test_silent_stream_timeout_also_reports_status_mismatch(base_url) -> None:
    text = _single_step(
        "      status: 201\n      sse:\n        timeout: 500ms\n        events:\n          - event: never",
        "/events/silent",
    )
    result = _run(text, base_url)

    step = result.steps[0]
    assert step.error.kind == ErrorKind.SSE_TIMEOUT
    assert "status: expected 201, got 200" in step.error.message
    assert [str(m) for m in step.mismatches] == ["status: expected 201, got 200"]
    assert step.response["status"] == 200
    assert step.response["body"] == {"heartbeat": [{}]}


def test_forbidden_event_fails_the_step(base_url) -> None:
    text = _single_step(
        "      sse:\n        has_events: [created]\n        has_no_events: [error]",
        "/events/forbidden",
    )
    result = _run(text, base_url)

    step = result.steps[0]
    assert step.error.kind == ErrorKind.ASSERTION_FAILURE
    messages = [str(m) for m in step.mismatches]
    assert "sse: received forbidden event 'error'" in messages
    assert "sse: stream stopped without a 'created' event" in messages


def test_stream_that_ends_early_is_a_mismatch(base_url) -> None:
    text = _single_step("      sse:\n        - event: created", "/events/short")
    result = _run(text, base_url)

    step = result.steps[0]
    assert step.error.kind == ErrorKind.ASSERTION_FAILURE
    assert step.mismatches[0].path == "events[0]"


def test_connection_refused_is_a_request_error() -> None:
    executor = ScenarioExecutor(config=ExecutionConfig(base_url="http://127.0.0.1:9", timeout=2))
    result = executor.run_sync(parse_scenario_yaml(CREATE_AND_FETCH))

    assert result.steps[0].error.kind == ErrorKind.REQUEST_ERROR
    assert result.steps[1].status == StepStatus.SKIPPED


def test_sample_scenarios_pass(api_server, base_url) -> None:
    executor = ScenarioExecutor(config=ExecutionConfig(base_url=base_url, timeout=5))

    for name in ("items.yaml", "items_events.scenario.md"):
        api_server.items.clear()
        result = executor.run_sync(parse_scenario(SAMPLES / name))
        assert result.success, result.to_dict()

    accept = [headers.get("Accept") for _, path, headers in api_server.requests_seen if path == "/events"]
    assert accept == ["text/event-stream"]
