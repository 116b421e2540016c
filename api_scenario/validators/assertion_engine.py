"""Assertion engine for evaluating step expectations.

Each expectation kind has one check routine returning a list of structured
mismatches. Every declared kind is evaluated, so a failing step reports all
of its mismatches, not only the first.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from requests.structures import CaseInsensitiveDict

from ..json_path import (
    MISSING_FIELD,
    UNEXPECTED_FIELD,
    Difference,
    PathNotFound,
    diff_values,
    resolve_path,
    values_equal,
)
from ..scenario.schema import Expectation, ExpectationKind, JsonEquality

MISSING = "missing"
ABSENT = "absent"
NOT_A_COLLECTION = "not a collection"
NOT_JSON = "response body is not JSON"


def parse_body(text: str, content_type: str) -> tuple[bool, Any]:
    """Parse ``text`` as JSON when the content type says so.

    A response without any content type is parsed when it happens to be
    valid JSON. Returns ``(is_json, value)``.
    """
    content_type = content_type.lower()
    if not text.strip():
        return False, None
    if content_type and "json" not in content_type:
        return False, None
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


@dataclass
class CapturedResponse:
    """What a step captured from the server."""
    status: int
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    text: str = ""
    body: Any = None
    is_json: bool = False

    @classmethod
    def from_text(cls, status: int, headers: Mapping[str, str], text: str) -> "CapturedResponse":
        headers = CaseInsensitiveDict(headers)
        is_json, body = parse_body(text, headers.get("Content-Type", ""))
        return cls(
            status=status,
            headers=headers,
            text=text,
            body=body if is_json else text,
            is_json=is_json,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "headers": dict(self.headers),
            "body": self.body if self.is_json else self.text,
        }


@dataclass
class Mismatch:
    """A single failed check."""
    kind: ExpectationKind
    message: str
    path: Optional[str] = None
    expected: Any = None
    actual: Any = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.path is not None:
            data["path"] = self.path
        data["expected"] = self.expected
        data["actual"] = self.actual
        return data


@dataclass
class AssertionResult:
    """Result of one expectation kind."""
    kind: ExpectationKind
    mismatches: list[Mismatch] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.mismatches


@dataclass
class AssertionReport:
    """Report of all expectation kinds evaluated for a step."""
    results: list[AssertionResult] = field(default_factory=list)

    def add(self, kind: ExpectationKind, mismatches: list[Mismatch]) -> AssertionResult:
        result = AssertionResult(kind=kind, mismatches=list(mismatches))
        self.results.append(result)
        return result

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def mismatches(self) -> list[Mismatch]:
        return [m for r in self.results for m in r.mismatches]

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def total_count(self) -> int:
        return len(self.results)


def _show(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def check_status(expected: int, response: CapturedResponse) -> list[Mismatch]:
    if response.status == expected:
        return []
    return [Mismatch(
        kind=ExpectationKind.STATUS,
        message=f"status: expected {expected}, got {response.status}",
        expected=expected,
        actual=response.status,
    )]


def check_json(expected: dict[str, Any], response: CapturedResponse) -> list[Mismatch]:
    mismatches = []
    for path, value in expected.items():
        if not response.is_json:
            mismatches.append(Mismatch(
                kind=ExpectationKind.JSON,
                message=f"json '{path}': {NOT_JSON}",
                path=path,
                expected=value,
                actual=MISSING,
            ))
            continue
        try:
            actual = resolve_path(response.body, path)
        except PathNotFound as e:
            mismatches.append(Mismatch(
                kind=ExpectationKind.JSON,
                message=f"json '{path}': expected {_show(value)}, got {MISSING} ({e.reason})",
                path=path,
                expected=value,
                actual=MISSING,
            ))
            continue
        if not values_equal(value, actual):
            mismatches.append(Mismatch(
                kind=ExpectationKind.JSON,
                message=f"json '{path}': expected {_show(value)}, got {_show(actual)}",
                path=path,
                expected=value,
                actual=actual,
            ))
    return mismatches


def describe_difference(difference: Difference) -> str:
    where = difference.path or "$"
    if difference.reason == MISSING_FIELD:
        return f"'{where}': missing field, expected {_show(difference.expected)}"
    if difference.reason == UNEXPECTED_FIELD:
        return f"'{where}': unexpected field {_show(difference.actual)}"
    return f"'{where}': {difference.reason}: expected {_show(difference.expected)}, got {_show(difference.actual)}"


def check_json_eq(expected: JsonEquality, response: CapturedResponse) -> list[Mismatch]:
    """Compare the whole body with ``expected.value``, minus ignored paths."""
    if not response.is_json:
        return [Mismatch(
            kind=ExpectationKind.JSON_EQ,
            message=f"json_eq: {NOT_JSON}",
            expected=expected.value,
            actual=MISSING,
        )]
    return [
        Mismatch(
            kind=ExpectationKind.JSON_EQ,
            message=f"json_eq {describe_difference(difference)}",
            path=difference.path,
            expected=difference.expected,
            actual=MISSING if difference.reason == MISSING_FIELD else difference.actual,
        )
        for difference in diff_values(expected.value, response.body, expected.ignore_fields)
    ]


def check_json_lengths(expected: dict[str, int], response: CapturedResponse) -> list[Mismatch]:
    mismatches = []
    for path, count in expected.items():
        if not response.is_json:
            actual: Any = MISSING
            detail = NOT_JSON
        else:
            try:
                value = resolve_path(response.body, path)
            except PathNotFound as e:
                actual, detail = MISSING, e.reason
            else:
                if isinstance(value, (list, dict)):
                    if len(value) == count:
                        continue
                    actual, detail = len(value), None
                else:
                    actual, detail = NOT_A_COLLECTION, f"value is {_show(value)}"
        message = f"json_lengths '{path}': expected {count}, got {actual}"
        if detail:
            message += f" ({detail})"
        mismatches.append(Mismatch(
            kind=ExpectationKind.JSON_LENGTHS,
            message=message,
            path=path,
            expected=count,
            actual=actual,
        ))
    return mismatches


def check_headers(expected: dict[str, str], response: CapturedResponse) -> list[Mismatch]:
    headers = CaseInsensitiveDict(response.headers)
    mismatches = []
    for name, value in expected.items():
        actual = headers.get(name)
        if actual is None:
            mismatches.append(Mismatch(
                kind=ExpectationKind.HEADERS,
                message=f"header '{name}': expected {_show(value)}, got {ABSENT}",
                path=name,
                expected=value,
                actual=ABSENT,
            ))
        elif actual != value:
            mismatches.append(Mismatch(
                kind=ExpectationKind.HEADERS,
                message=f"header '{name}': expected {_show(value)}, got {_show(actual)}",
                path=name,
                expected=value,
                actual=actual,
            ))
    return mismatches


def check_contains(expected: list[str], response: CapturedResponse) -> list[Mismatch]:
    return [
        Mismatch(
            kind=ExpectationKind.CONTAINS,
            message=f"contains: body does not contain {_show(text)}",
            expected=text,
        )
        for text in expected
        if text not in response.text
    ]


CheckFunction = Callable[[Any, CapturedResponse], list[Mismatch]]

CHECKS: dict[ExpectationKind, CheckFunction] = {
    ExpectationKind.STATUS: check_status,
    ExpectationKind.JSON: check_json,
    ExpectationKind.JSON_EQ: check_json_eq,
    ExpectationKind.JSON_LENGTHS: check_json_lengths,
    ExpectationKind.HEADERS: check_headers,
    ExpectationKind.CONTAINS: check_contains,
}


class AssertionEngine:
    """Evaluates declared expectations against a captured response.

    ``sse`` is not handled here: it is judged by the StreamValidator while
    the stream is consumed, and its result is added to the same report.
    """

    def __init__(self, checks: Optional[dict[ExpectationKind, CheckFunction]] = None):
        self.checks = dict(CHECKS if checks is None else checks)

    def evaluate(self, expectation: Expectation, response: CapturedResponse) -> AssertionReport:
        """Evaluate every declared kind.

        Args:
            expectation: Expectation with placeholders already expanded.
            response: Captured response.

        Returns:
            AssertionReport with one result per evaluated kind.
        """
        report = AssertionReport()
        for kind in expectation.declared_kinds:
            check = self.checks.get(kind)
            if check is None:
                continue
            report.add(kind, check(getattr(expectation, kind.value), response))
        return report
