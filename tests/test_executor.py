import asyncio
import time

import pytest

from api_scenario.errors import RequestError
from api_scenario.runner import (
    ErrorKind,
    ExecutionConfig,
    RunState,
    ScenarioExecutor,
    StepStatus,
    run_scenarios,
)
from api_scenario.scenario import parse_scenario_yaml
from fakes import FakeClient, FakeResponse, sse_response

TWO_STEPS = """
name: create and fetch
config:
  base_url: http://api.test
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
  - id: fetch
    name: fetch
    request:
      method: GET
      url: /items/{{ item_id }}
    expect:
      status: 200
      json:
        id: "{{ item_id }}"
        name: "{{ steps.create.outputs.name }}"
"""


def _run(scenario, client, config=None):
    return ScenarioExecutor(client=client, config=config).run_sync(scenario)


def _three_steps(continue_on_failure: bool = False):
    return parse_scenario_yaml(f"""
name: three
config:
  base_url: http://api.test
  continue_on_failure: {str(continue_on_failure).lower()}
steps:
  - {{name: first, request: {{method: GET, url: /1}}, expect: {{status: 200}}}}
  - {{name: second, request: {{method: GET, url: /2}}, expect: {{status: 200}}}}
  - {{name: third, request: {{method: GET, url: /3}}, expect: {{status: 200}}}}
""")


def test_saved_values_flow_into_later_steps() -> None:
    client = FakeClient(
        FakeResponse(201, {"id": "abc", "name": "widget"}),
        FakeResponse(200, {"id": "abc", "name": "widget"}),
    )
    result = _run(parse_scenario_yaml(TWO_STEPS), client)

    assert result.success, result.to_dict()
    assert result.state == RunState.COMPLETED
    assert client.sent[0].url == "http://api.test/items"
    assert client.sent[0].body == {"name": "widget"}
    assert client.sent[1].url == "http://api.test/items/abc"
    assert [s.index for s in result.steps] == [0, 1]
    assert result.steps[0].response["body"] == {"id": "abc", "name": "widget"}


def test_echo_mismatch_reports_path() -> None:
    client = FakeClient(
        FakeResponse(201, {"id": "abc", "name": "widget"}),
        FakeResponse(200, {"id": "zzz", "name": "widget"}),
    )
    result = _run(parse_scenario_yaml(TWO_STEPS), client)

    assert not result.success
    failed = result.steps[1]
    assert failed.error.kind == ErrorKind.ASSERTION_FAILURE
    (mismatch,) = failed.mismatches
    assert (mismatch.path, mismatch.expected, mismatch.actual) == ("id", "abc", "zzz")


def test_whole_placeholder_body_keeps_type() -> None:
    scenario = parse_scenario_yaml("""
name: typed
vars: {count: 3, tags: [a, b]}
steps:
  - name: send
    request:
      method: POST
      url: http://api.test/things
      body: {count: "{{ count }}", tags: "{{ tags }}", label: "n={{ count }}"}
    expect: {status: 200}
""")
    client = FakeClient(FakeResponse(200, {}))
    assert _run(scenario, client).success
    assert client.sent[0].body == {"count": 3, "tags": ["a", "b"], "label": "n=3"}


def test_unresolved_variable_never_sends_the_request() -> None:
    scenario = parse_scenario_yaml("""
name: unresolved
steps:
  - {name: lookup, request: {method: GET, url: "http://api.test/{{ missing }}"}, expect: {status: 200}}
  - {name: after, request: {method: GET, url: "http://api.test/after"}, expect: {status: 200}}
""")
    client = FakeClient()
    result = _run(scenario, client)

    assert client.sent == []
    assert result.steps[0].error.kind == ErrorKind.UNRESOLVED_VARIABLE
    assert result.steps[0].error.details["expression"] == "missing"
    assert result.steps[1].status == StepStatus.SKIPPED


def test_failure_skips_remaining_steps_by_default() -> None:
    client = FakeClient(FakeResponse(200, {}), FakeResponse(500, {}))
    result = _run(_three_steps(), client)

    assert [s.status for s in result.steps] == [StepStatus.PASSED, StepStatus.FAILED, StepStatus.SKIPPED]
    assert result.steps[2].error.kind == ErrorKind.SKIPPED_DUE_TO_PRIOR_FAILURE
    assert result.aborted
    assert not result.success
    assert len(client.sent) == 2
    assert (result.passed_count, result.failed_count, result.skipped_count) == (1, 1, 1)


def test_continue_on_failure_runs_every_step() -> None:
    client = FakeClient(FakeResponse(500, {}), FakeResponse(200, {}), FakeResponse(200, {}))
    result = _run(_three_steps(continue_on_failure=True), client)

    assert [s.status for s in result.steps] == [StepStatus.FAILED, StepStatus.PASSED, StepStatus.PASSED]
    assert result.state == RunState.COMPLETED
    assert not result.success
    assert len(client.sent) == 3


def test_execution_config_overrides_scenario_config() -> None:
    client = FakeClient(FakeResponse(500, {}), FakeResponse(200, {}), FakeResponse(200, {}))
    config = ExecutionConfig(base_url="http://other.test", timeout=2.5, continue_on_failure=True)
    result = _run(_three_steps(), client, config)

    assert result.skipped_count == 0
    assert client.sent[0].url == "http://other.test/1"
    assert client.timeouts[0] == (2.5, None)


def test_request_error_is_recorded() -> None:
    client = FakeClient(RequestError("Connection failed for GET http://api.test/1"))
    result = _run(_three_steps(), client)

    assert result.steps[0].error.kind == ErrorKind.REQUEST_ERROR
    assert "Connection failed" in result.steps[0].error.message
    assert result.skipped_count == 2


def test_capture_error_applies_no_partial_saves() -> None:
    scenario = parse_scenario_yaml("""
name: capture
config: {base_url: "http://api.test", continue_on_failure: true}
steps:
  - id: create
    name: create
    request: {method: POST, url: /items}
    expect: {status: 201}
    save: {item_id: id, owner: owner.name}
  - name: use
    request: {method: GET, url: "/items/{{ item_id }}"}
    expect: {status: 200}
  - name: use output
    request: {method: GET, url: "/items/{{ steps.create.outputs.id }}"}
    expect: {status: 200}
""")
    client = FakeClient(FakeResponse(201, {"id": "abc"}))
    result = _run(scenario, client)

    assert result.steps[0].error.kind == ErrorKind.CAPTURE_ERROR
    assert result.steps[0].error.details == {"name": "owner", "path": "owner.name"}
    assert result.steps[1].error.kind == ErrorKind.UNRESOLVED_VARIABLE
    assert result.steps[2].error.kind == ErrorKind.UNRESOLVED_VARIABLE
    assert len(client.sent) == 1


def test_failed_step_does_not_save() -> None:
    scenario = parse_scenario_yaml("""
name: no save on failure
config: {base_url: "http://api.test", continue_on_failure: true}
steps:
  - {name: create, request: {method: POST, url: /items}, expect: {status: 201}, save: {item_id: id}}
  - {name: use, request: {method: GET, url: "/items/{{ item_id }}"}, expect: {status: 200}}
""")
    client = FakeClient(FakeResponse(400, {"id": "abc"}))
    result = _run(scenario, client)

    assert result.steps[0].error.kind == ErrorKind.ASSERTION_FAILURE
    assert result.steps[1].error.kind == ErrorKind.UNRESOLVED_VARIABLE


def test_headers_and_query_are_expanded_and_merged() -> None:
    scenario = parse_scenario_yaml("""
name: headers
config:
  base_url: http://api.test/v1/
  headers: {Accept: application/json, Authorization: "Bearer {{ token }}"}
vars: {token: t-1, page: 2}
steps:
  - name: list
    request:
      method: GET
      url: items
      headers: {accept: text/plain}
      query: {page: "{{ page }}"}
    expect: {status: 200}
""")
    client = FakeClient(FakeResponse(200, {}))
    assert _run(scenario, client).success

    sent = client.sent[0]
    assert sent.url == "http://api.test/v1/items"
    assert {k.lower(): v for k, v in sent.headers.items()} == {
        "accept": "text/plain",
        "authorization": "Bearer t-1",
    }
    assert sent.query == {"page": "2"}


def test_sse_step_saves_and_records_grouped_output() -> None:
    scenario = parse_scenario_yaml("""
name: stream
config: {base_url: "http://api.test"}
vars: {wanted: x}
steps:
  - id: watch
    name: watch
    request: {method: GET, url: /events}
    expect:
      status: 200
      contains: ["event: done"]
      json:
        done.0.ok: true
      sse:
        timeout: 3s
        events:
          - event: created
            data: {id: "{{ wanted }}"}
            save: {created_name: name}
          - event: done
    save:
      first_ping: sse.ping.0.n
  - name: use
    request: {method: GET, url: "/items/{{ created_name }}/{{ first_ping }}/{{ steps.watch.outputs.created.0.id }}"}
    expect: {status: 200}
""")
    stream = sse_response(
        "event: ping\ndata: {\"n\": 1}\n\n",
        "event: created\ndata: {\"id\": \"x\", \"name\": \"widget\"}\n\n",
        "event: done\ndata: {\"ok\": true}\n\n",
    )
    client = FakeClient(stream, FakeResponse(200, {}))
    result = _run(scenario, client)

    assert result.success, result.to_dict()
    assert stream.closed
    assert client.timeouts[0] == (30.0, 3.0)
    assert client.sent[1].url == "http://api.test/items/widget/1/x"
    assert result.steps[0].response["body"]["created"] == [{"id": "x", "name": "widget"}]


def test_sse_stream_ending_early_is_an_assertion_failure() -> None:
    scenario = parse_scenario_yaml("""
name: short stream
steps:
  - name: watch
    request: {method: GET, url: "http://api.test/events"}
    expect:
      sse:
        - event: done
""")
    client = FakeClient(sse_response("event: ping\ndata: {}\n\n"))
    result = _run(scenario, client)

    step = result.steps[0]
    assert step.error.kind == ErrorKind.ASSERTION_FAILURE
    assert step.mismatches[0].path == "events[0]"


def test_owned_client_is_not_closed_by_executor() -> None:
    client = FakeClient(FakeResponse(201, {"id": "a", "name": "widget"}), FakeResponse(200, {"id": "a", "name": "widget"}))
    _run(parse_scenario_yaml(TWO_STEPS), client)
    assert not client.closed


def test_run_scenarios_isolates_scopes_and_keeps_order() -> None:
    template = """
name: {name}
vars: {{item_id: {item_id}}}
steps:
  - {{name: get, request: {{method: GET, url: "http://api.test/items/{{{{ item_id }}}}"}}, expect: {{status: 200}}}}
"""
    scenarios = [
        parse_scenario_yaml(template.format(name=f"s{i}", item_id=f"id-{i}"))
        for i in range(5)
    ]
    clients = []

    def factory():
        client = FakeClient(FakeResponse(200, {}))
        clients.append(client)
        return client

    results = asyncio.run(run_scenarios(scenarios, max_concurrency=2, client_factory=factory))

    assert [r.name for r in results] == ["s0", "s1", "s2", "s3", "s4"]
    assert all(r.success for r in results)
    assert sorted(c.sent[0].url for c in clients) == [f"http://api.test/items/id-{i}" for i in range(5)]
    assert all(c.closed for c in clients)


def test_empty_scenario_succeeds() -> None:
    result = _run(parse_scenario_yaml("name: nothing\nsteps: []\n"), FakeClient())
    assert result.success
    assert result.steps == []


@pytest.mark.parametrize("status", [200, 204])
def test_result_to_dict(status: int) -> None:
    client = FakeClient(FakeResponse(status, {}), FakeResponse(200, {}), FakeResponse(200, {}))
    data = _run(_three_steps(continue_on_failure=True), client).to_dict()

    assert data["name"] == "three"
    assert data["summary"]["total"] == 3
    assert data["success"] is (status == 200)
    assert data["steps"][0]["request"]["url"] == "http://api.test/1"


def test_sse_timeout_keeps_other_mismatches_and_response() -> None:
    scenario = parse_scenario_yaml("""
name: silent stream
steps:
  - name: watch
    request: {method: GET, url: "http://api.test/events"}
    expect:
      status: 201
      headers: {X-Stream: "yes"}
      sse:
        timeout: 200ms
        events:
          - event: never
""")

    def silent():
        yield "event: ping\ndata: {}\n\n"
        while True:
            time.sleep(0.02)
            yield ": keepalive\n\n"

    stream = FakeResponse(200, headers={"Content-Type": "text/event-stream"}, chunks=silent())
    result = _run(scenario, FakeClient(stream))

    step = result.steps[0]
    assert step.error.kind == ErrorKind.SSE_TIMEOUT
    assert step.error.details["matcher"] == "(event='never')"
    assert "status: expected 201, got 200" in step.error.message
    assert [m.kind.value for m in step.mismatches] == ["status", "headers"]
    assert step.response["status"] == 200
    assert step.response["body"] == {"ping": [{}]}
    assert stream.closed


def test_false_condition_skips_step_without_failing() -> None:
    scenario = parse_scenario_yaml("""
name: conditional
config: {base_url: "http://api.test"}
vars: {cleanup: false}
steps:
  - id: create
    name: create
    request: {method: POST, url: /items}
    expect: {status: 201}
  - name: cleanup
    condition: "{{ cleanup }}"
    request: {method: DELETE, url: /items/1}
    expect: {status: 204}
  - name: premium only
    condition: "{{ steps.create.outputs.tier }} "
    request: {method: GET, url: /premium}
    expect: {status: 200}
  - name: fetch
    condition: " TRUE "
    request: {method: GET, url: /items}
    expect: {status: 200}
""")
    client = FakeClient(FakeResponse(201, {"tier": "True"}), FakeResponse(200, {}), FakeResponse(200, {}))
    result = _run(scenario, client)

    assert result.success, result.to_dict()
    assert [s.status for s in result.steps] == [
        StepStatus.PASSED,
        StepStatus.SKIPPED,
        StepStatus.PASSED,
        StepStatus.PASSED,
    ]
    skipped = result.steps[1]
    assert skipped.error is None
    assert skipped.skip_reason == "condition '{{ cleanup }}' is not true"
    assert skipped.to_dict()["skip_reason"] == skipped.skip_reason
    assert [r.url for r in client.sent] == [
        "http://api.test/items",
        "http://api.test/premium",
        "http://api.test/items",
    ]


def test_unresolvable_condition_fails_the_step() -> None:
    scenario = parse_scenario_yaml("""
name: conditional
steps:
  - name: guarded
    condition: "{{ nowhere }}"
    request: {method: GET, url: "http://api.test/x"}
    expect: {status: 200}
""")
    client = FakeClient()
    result = _run(scenario, client)

    assert result.steps[0].error.kind == ErrorKind.UNRESOLVED_VARIABLE
    assert client.sent == []


def test_json_eq_expands_placeholders_and_ignores_fields() -> None:
    scenario = parse_scenario_yaml("""
name: whole body
config: {base_url: "http://api.test"}
vars: {name: widget}
steps:
  - name: fetch
    request: {method: GET, url: /items/1}
    expect:
      json_eq:
        id: 1
        name: "{{ name }}"
        tags: [{label: a}]
      json_ignore_fields: [created_at, tags.*.id]
""")
    body = {"id": 1, "name": "widget", "created_at": "2026-01-01", "tags": [{"id": 9, "label": "a"}]}
    assert _run(scenario, FakeClient(FakeResponse(200, body))).success

    body["extra"] = True
    result = _run(scenario, FakeClient(FakeResponse(200, body)))
    (mismatch,) = result.steps[0].mismatches
    assert mismatch.path == "extra"
    assert mismatch.message == "json_eq 'extra': unexpected field true"


def test_sse_data_eq_expands_placeholders() -> None:
    scenario = parse_scenario_yaml("""
name: stream equality
vars: {wanted: x}
steps:
  - name: watch
    request: {method: GET, url: "http://api.test/events"}
    expect:
      sse:
        has_events: [done]
        has_no_events: [error]
        events:
          - event: created
            data_eq: {id: "{{ wanted }}", name: widget}
            ignore_fields: [at]
""")
    stream = sse_response(
        "event: created\ndata: {\"id\": \"y\", \"name\": \"widget\", \"at\": 1}\n\n",
        "event: created\ndata: {\"id\": \"x\", \"name\": \"widget\", \"at\": 2}\n\n",
        "event: done\ndata: {}\n\n",
    )
    result = _run(scenario, FakeClient(stream))

    assert result.success, result.to_dict()
    assert result.steps[0].response["body"]["created"][1]["id"] == "x"
