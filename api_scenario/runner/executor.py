"""Scenario executor - runs the steps of a scenario in order.

Per step:
1. Check the step condition; skip the step when it is not true
2. Expand placeholders in the request and the expectation
3. Dispatch the request (HTTP)
4. Capture the response, or consume it as an event stream
5. Evaluate every declared expectation
6. Save variables and record the step output
7. Continue, or abort and skip the remaining steps
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from ..errors import (
    AssertionFailure,
    CaptureError,
    RequestError,
    SSETimeout,
    UnresolvedVariable,
)
from ..json_path import PathNotFound, resolve_path
from ..scenario.schema import (
    Expectation,
    ExpectationKind,
    HttpRequest,
    JsonEquality,
    Scenario,
    ScenarioConfig,
    SseEventMatcher,
    Step,
)
from ..templating import VariableScope, expand_mapping, expand_string, expand_value
from ..transport.http_client import HttpClient, RequestInfo, build_url, merge_headers
from ..validators.assertion_engine import AssertionEngine, CapturedResponse
from ..validators.sse_validator import StreamOutcome, StreamValidator, strip_sse_prefix, wait_bound
from .results import RunState, ScenarioResult, StepError, StepResult, StepStatus

logger = logging.getLogger(__name__)

STEP_ERRORS = (UnresolvedVariable, RequestError, AssertionFailure, SSETimeout, CaptureError)
DEFAULT_CONCURRENCY = 4


@dataclass
class ExecutionConfig:
    """Run-wide overrides applied on top of each scenario's own config."""
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    continue_on_failure: Optional[bool] = None

    def apply(self, config: ScenarioConfig) -> ScenarioConfig:
        return dataclasses.replace(
            config,
            base_url=self.base_url or config.base_url,
            timeout=self.timeout if self.timeout is not None else config.timeout,
            continue_on_failure=(
                self.continue_on_failure
                if self.continue_on_failure is not None
                else config.continue_on_failure
            ),
        )


def expand_request(
    template: HttpRequest,
    scope: VariableScope,
    config: ScenarioConfig,
) -> RequestInfo:
    """Resolve every placeholder of a request template.

    Raises:
        UnresolvedVariable: If any placeholder cannot be resolved.
    """
    base_url = expand_string(config.base_url, scope) if config.base_url else None
    return RequestInfo(
        method=template.method,
        url=build_url(base_url, expand_string(template.url, scope)),
        headers=merge_headers(
            expand_mapping(config.headers, scope),
            expand_mapping(template.headers, scope),
        ),
        query=expand_mapping(template.query, scope),
        body=expand_value(template.body, scope),
    )


def _expand_equality(equality: Optional[JsonEquality], scope: VariableScope) -> Optional[JsonEquality]:
    if equality is None:
        return None
    return dataclasses.replace(equality, value=expand_value(equality.value, scope))


def _expand_matcher(matcher: SseEventMatcher, scope: VariableScope) -> SseEventMatcher:
    return dataclasses.replace(
        matcher,
        event=expand_string(matcher.event, scope) if matcher.event is not None else None,
        data=expand_value(matcher.data, scope),
        data_contains=(
            expand_string(matcher.data_contains, scope)
            if matcher.data_contains is not None
            else None
        ),
        data_eq=_expand_equality(matcher.data_eq, scope),
    )


def expand_expectation(expect: Expectation, scope: VariableScope) -> Expectation:
    """Resolve placeholders in expected values. Paths are left as written."""
    sse = expect.sse
    if sse is not None:
        sse = dataclasses.replace(
            sse,
            events=[_expand_matcher(m, scope) for m in sse.events],
            has_events=[expand_string(name, scope) for name in sse.has_events],
            has_no_events=[expand_string(name, scope) for name in sse.has_no_events],
        )
    return dataclasses.replace(
        expect,
        json={path: expand_value(value, scope) for path, value in expect.json.items()},
        json_eq=_expand_equality(expect.json_eq, scope),
        headers=expand_mapping(expect.headers, scope),
        contains=[expand_string(text, scope) for text in expect.contains],
        sse=sse,
    )


def condition_holds(condition: str, scope: VariableScope) -> bool:
    """Expand a step condition; only text reading ``true`` lets the step run.

    Raises:
        UnresolvedVariable: If the condition references an unknown value.
    """
    return expand_string(condition, scope).strip().lower() == "true"


def collect_saves(
    save: dict[str, str],
    captured: CapturedResponse,
    outcome: Optional[StreamOutcome] = None,
) -> dict[str, Any]:
    """Evaluate ``save`` paths against the captured body.

    Nothing is applied here; the caller updates the scope only when every
    path resolved.

    Raises:
        CaptureError: If a path does not resolve.
    """
    saved: dict[str, Any] = {}
    if outcome is not None:
        saved.update(outcome.collect_saves())

    for name, path in save.items():
        if outcome is not None:
            path = strip_sse_prefix(path)
        if path and not captured.is_json:
            raise CaptureError(name, path, "response body is not JSON")
        try:
            saved[name] = resolve_path(captured.body, path)
        except PathNotFound as e:
            raise CaptureError(name, path, e.reason) from e
    return saved


class ScenarioExecutor:
    """Runs one scenario at a time against an injected HTTP client."""

    def __init__(
        self,
        client: Optional[HttpClient] = None,
        config: Optional[ExecutionConfig] = None,
        assertion_engine: Optional[AssertionEngine] = None,
        stream_validator: Optional[StreamValidator] = None,
    ):
        """Initialize scenario executor.

        Args:
            client: Transport used to send requests. When omitted, each run
                creates its own HttpClient and closes it afterwards.
            config: Run-wide overrides.
            assertion_engine: Evaluator for non-stream expectations.
            stream_validator: Consumer for ``sse`` expectations.
        """
        self.client = client
        self.config = config or ExecutionConfig()
        self.assertion_engine = assertion_engine or AssertionEngine()
        self.stream_validator = stream_validator or StreamValidator()

    async def run(self, scenario: Scenario) -> ScenarioResult:
        """Execute every step of ``scenario``.

        Step failures are recorded on the result and never raised.

        Returns:
            ScenarioResult with one StepResult per step.
        """
        start_time = time.perf_counter()
        settings = self.config.apply(scenario.config)
        scope = VariableScope(scenario.vars)
        result = ScenarioResult(
            name=scenario.name,
            source=scenario.source,
            tags=sorted(scenario.tags),
        )
        client = self.client or HttpClient()
        failed_step: Optional[str] = None

        logger.info("Running scenario '%s' (%d steps)", scenario.name, scenario.total_steps)
        try:
            for index, step in enumerate(scenario.steps):
                if result.aborted:
                    result.steps.append(StepResult(
                        index=index,
                        name=step.name,
                        step_id=step.id,
                        status=StepStatus.SKIPPED,
                        error=StepError.skipped(failed_step),
                    ))
                    logger.info("  [SKIP] %s", step.label)
                    continue

                step_result = await self.run_step(step, scope, settings, client, index=index)
                result.steps.append(step_result)
                failed = not (step_result.success or step_result.skipped_by_condition)
                if failed and not settings.continue_on_failure:
                    failed_step = step.label
                    result.state = RunState.ABORTED
        finally:
            if self.client is None:
                client.close()
            result.duration_ms = (time.perf_counter() - start_time) * 1000

        if result.state == RunState.RUNNING:
            result.state = RunState.COMPLETED

        logger.info(
            "Scenario '%s' %s: %d passed, %d failed, %d skipped (%.0f ms)",
            scenario.name,
            "passed" if result.success else "failed",
            result.passed_count,
            result.failed_count,
            result.skipped_count,
            result.duration_ms,
        )
        return result

    def run_sync(self, scenario: Scenario) -> ScenarioResult:
        """Blocking wrapper around ``run()`` for callers without a loop."""
        return asyncio.run(self.run(scenario))

    async def run_step(
        self,
        step: Step,
        scope: VariableScope,
        settings: ScenarioConfig,
        client: HttpClient,
        index: int = 0,
    ) -> StepResult:
        """Run one step, updating ``scope`` only if it passes."""
        start_time = time.perf_counter()
        step_result = StepResult(
            index=index,
            name=step.name,
            step_id=step.id,
            status=StepStatus.FAILED,
        )

        try:
            if step.condition is not None and not condition_holds(step.condition, scope):
                step_result.status = StepStatus.SKIPPED
                step_result.skip_reason = f"condition {step.condition!r} is not true"
            else:
                await self._execute(step, scope, settings, client, step_result)
                step_result.status = StepStatus.PASSED

        except STEP_ERRORS as e:
            step_result.error = StepError.from_exception(e)
            if isinstance(e, (AssertionFailure, SSETimeout)):
                step_result.mismatches = list(e.mismatches)

        finally:
            step_result.duration_ms = (time.perf_counter() - start_time) * 1000

        if step_result.success:
            logger.info("  [PASS] %s (%.0f ms)", step.label, step_result.duration_ms)
        elif step_result.skipped:
            logger.info("  [SKIP] %s: %s", step.label, step_result.skip_reason)
        else:
            logger.info("  [FAIL] %s: %s", step.label, step_result.error.message)
        return step_result

    async def _execute(
        self,
        step: Step,
        scope: VariableScope,
        settings: ScenarioConfig,
        client: HttpClient,
        step_result: StepResult,
    ) -> None:
        request = expand_request(step.request, scope, settings)
        expectation = expand_expectation(step.expect, scope)
        step_result.request = request.to_dict()

        captured, outcome = await self._dispatch(client, request, expectation, settings)
        step_result.response = captured.to_dict()

        report = self.assertion_engine.evaluate(expectation, captured)
        if outcome is not None:
            report.add(ExpectationKind.SSE, outcome.mismatches())
            if outcome.expired:
                raise outcome.timeout_error(report.mismatches)
        if not report.all_passed:
            raise AssertionFailure(report.mismatches)

        scope.update(collect_saves(step.save, captured, outcome))
        if step.id:
            scope.record_output(step.id, captured.body)

    async def _dispatch(
        self,
        client: HttpClient,
        request: RequestInfo,
        expectation: Expectation,
        settings: ScenarioConfig,
    ) -> tuple[CapturedResponse, Optional[StreamOutcome]]:
        timeout = settings.timeout

        if expectation.sse is not None:
            read_timeout = wait_bound(expectation.sse, timeout)
            response = await asyncio.to_thread(client.send, request, timeout, read_timeout)
            outcome = await self.stream_validator.validate(response, expectation.sse, timeout)
            captured = CapturedResponse(
                status=response.status,
                headers=response.headers,
                text=outcome.text,
                body=outcome.grouped_value(),
                is_json=True,
            )
            return captured, outcome

        response = await asyncio.to_thread(client.send, request, timeout)
        try:
            text = await asyncio.to_thread(response.read_text)
        finally:
            response.close()
        return CapturedResponse.from_text(response.status, response.headers, text), None


async def run_scenarios(
    scenarios: Iterable[Scenario],
    config: Optional[ExecutionConfig] = None,
    max_concurrency: int = DEFAULT_CONCURRENCY,
    client_factory: Callable[[], HttpClient] = HttpClient,
) -> list[ScenarioResult]:
    """Run scenarios concurrently, one client and one scope per scenario.

    Args:
        scenarios: Scenarios to run.
        config: Run-wide overrides.
        max_concurrency: Maximum number of scenarios in flight.
        client_factory: Creates the client for each scenario.

    Returns:
        Results in the order the scenarios were given.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def run_one(scenario: Scenario) -> ScenarioResult:
        async with semaphore:
            client = client_factory()
            try:
                return await ScenarioExecutor(client=client, config=config).run(scenario)
            finally:
                client.close()

    return list(await asyncio.gather(*(run_one(s) for s in scenarios)))
