"""Scenario validator for the scenario runner.

Validates parsed Scenario objects against structural rules that a single
step cannot check on its own: unique ids, step references, timeouts.
"""

import dataclasses

from ..templating import iter_expressions, parse_step_reference
from .schema import (
    Scenario,
    Step,
    ValidationError,
    ValidationResult,
    VALID_METHODS,
)


def validate_scenario(scenario: Scenario) -> ValidationResult:
    """Validate a parsed Scenario object.

    Checks:
    - Name and config (timeout)
    - Step ids are unique
    - Every ``steps.<id>.outputs`` reference names a step defined earlier
    - HTTP methods

    Args:
        scenario: Parsed Scenario to validate.

    Returns:
        ValidationResult with errors and warnings.
    """
    errors: list[ValidationError] = []
    warnings: list[ValidationError] = []

    if not scenario.name or not scenario.name.strip():
        errors.append(ValidationError(
            path="name",
            message="'name' is required and must not be empty.",
        ))

    if scenario.config.timeout <= 0:
        errors.append(ValidationError(
            path="config.timeout",
            message=f"Timeout must be positive, got {scenario.config.timeout}.",
        ))

    _validate_steps(scenario, errors, warnings)

    if not scenario.steps:
        warnings.append(ValidationError(
            path="steps",
            message="No steps defined.",
            severity="warning",
        ))

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )


def _validate_steps(
    scenario: Scenario,
    errors: list[ValidationError],
    warnings: list[ValidationError],
) -> None:
    """Validate steps and their cross-step references."""
    all_ids = set(scenario.step_ids)
    seen_ids: dict[str, int] = {}

    for i, step in enumerate(scenario.steps):
        path = f"steps[{i}]"

        if step.id:
            if step.id in seen_ids:
                errors.append(ValidationError(
                    path=f"{path}.id",
                    message=f"Duplicate step id '{step.id}' (first used by steps[{seen_ids[step.id]}]).",
                ))
            else:
                seen_ids[step.id] = i

        if step.request.method not in VALID_METHODS:
            errors.append(ValidationError(
                path=f"{path}.request.method",
                message=f"Invalid method '{step.request.method}'. Must be one of: {', '.join(sorted(VALID_METHODS))}",
            ))

        if not step.request.url:
            errors.append(ValidationError(
                path=f"{path}.request.url",
                message="'url' is required and must not be empty.",
            ))

        sse = step.expect.sse
        if sse is not None and sse.timeout is not None and sse.timeout <= 0:
            errors.append(ValidationError(
                path=f"{path}.expect.sse.timeout",
                message=f"Timeout must be positive, got {sse.timeout}.",
            ))

        if sse is not None:
            for name in sorted(set(sse.has_events) & set(sse.has_no_events)):
                errors.append(ValidationError(
                    path=f"{path}.expect.sse",
                    message=f"Event '{name}' is listed in both has_events and has_no_events.",
                ))

        if step.expect.is_empty:
            warnings.append(ValidationError(
                path=f"{path}.expect",
                message="No expectations declared. Step passes on any response.",
                severity="warning",
            ))

        for expression in _step_expressions(step):
            reference = parse_step_reference(expression)
            if reference is None:
                continue
            step_id = reference[0]
            if step_id not in all_ids:
                errors.append(ValidationError(
                    path=path,
                    message=f"Reference to undefined step id '{step_id}' in '{{{{ {expression} }}}}'.",
                ))
            elif step_id not in seen_ids or step_id == step.id:
                errors.append(ValidationError(
                    path=path,
                    message=f"Forward reference to step '{step_id}' in '{{{{ {expression} }}}}'; its output is not captured yet.",
                ))


def _step_expressions(step: Step) -> list[str]:
    request = dataclasses.asdict(step.request)
    expect = dataclasses.asdict(step.expect)
    return list(iter_expressions([step.condition, request, expect]))
