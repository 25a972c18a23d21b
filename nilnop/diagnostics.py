"""
nilnop/diagnostics.py
═════════════════════

Diagnostic model and the shared sink findings are appended to.

A :class:`Diagnostic` is produced for every null argument passed to a
configured target (category ``nilnop``) and for every degenerate nil
comparison (category ``cond``).  Diagnostics are immutable and carry
everything the reporting layer needs: location, message, category and
the function they were found in.

The :class:`DiagnosticSink` accepts concurrent appends from worker
threads; it makes no ordering promise, so :meth:`DiagnosticSink.sorted`
is what reporters should consume.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: DIAGNOSTIC MODEL
# ═════════════════════════════════════════════════════════════════════════

CATEGORY_NIL_ARGUMENT = "nilnop"
CATEGORY_CONDITION = "cond"


class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    INFORMATION = "information"


@dataclass(frozen=True, order=True)
class SourceLocation:
    """A specific point in source code.

    A location with ``line == 0`` is *invalid*: the instruction it belongs
    to has no corresponding syntax.
    """
    file: str = ""
    line: int = 0
    column: int = 0

    @property
    def is_valid(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        if not self.is_valid:
            return self.file or "-"
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


NO_LOCATION = SourceLocation()


@dataclass(frozen=True)
class Diagnostic:
    """
    A single finding.

    Attributes
    ----------
    error_id : Stable identifier (``nilPassed``, ``condTautological``,
               ``condImpossible``)
    message  : Human-readable description
    category : ``nilnop`` for null arguments, ``cond`` for comparisons
    location : Primary source location
    severity : DiagnosticSeverity
    function : Qualified name of the function the finding is in
    evidence : Machine-readable detail for downstream tooling
    """
    error_id: str
    message: str
    category: str
    location: SourceLocation
    severity: DiagnosticSeverity = DiagnosticSeverity.WARNING
    function: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def sort_key(self):
        return (self.location, self.category, self.message)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize to the cppcheck-addon style JSON object."""
        d: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "category": self.category,
            "errorId": self.error_id,
            "function": self.function,
        }
        if self.evidence:
            d["evidence"] = dict(self.evidence)
        return d

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_json_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"

    def __str__(self) -> str:
        return self.to_gcc_format()


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: SINK
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSink:
    """
    Thread-safe append-only collection of diagnostics.

    Usage
    -----
    >>> sink = DiagnosticSink()
    >>> sink.report(diag)
    >>> for d in sink.sorted():
    ...     print(d)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Diagnostic] = []

    def report(self, diag: Diagnostic) -> Diagnostic:
        with self._lock:
            self._items.append(diag)
        return diag

    def snapshot(self) -> List[Diagnostic]:
        with self._lock:
            return list(self._items)

    def sorted(self) -> List[Diagnostic]:
        """Diagnostics ordered by location, independent of arrival order."""
        return sorted(self.snapshot(), key=Diagnostic.sort_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.snapshot())


def nil_argument_diagnostic(
    location: SourceLocation,
    callee_name: str,
    arg_pos: int,
    function: str = "",
) -> Diagnostic:
    return Diagnostic(
        error_id="nilPassed",
        message=f"nil is passed to {callee_name} (argument {arg_pos})",
        category=CATEGORY_NIL_ARGUMENT,
        location=location,
        severity=DiagnosticSeverity.WARNING,
        function=function,
        evidence={"callee": callee_name, "argPos": arg_pos},
    )


def condition_diagnostic(
    location: SourceLocation,
    adjective: str,
    xnil: Any,
    op: str,
    ynil: Any,
    function: str = "",
) -> Diagnostic:
    error_id = "condTautological" if adjective == "tautological" else "condImpossible"
    return Diagnostic(
        error_id=error_id,
        message=f"{adjective} condition: {xnil} {op} {ynil}",
        category=CATEGORY_CONDITION,
        location=location,
        severity=DiagnosticSeverity.STYLE,
        function=function,
        evidence={"x": str(xnil), "op": op, "y": str(ynil)},
    )


__all__ = [
    "CATEGORY_NIL_ARGUMENT",
    "CATEGORY_CONDITION",
    "DiagnosticSeverity",
    "SourceLocation",
    "NO_LOCATION",
    "Diagnostic",
    "DiagnosticSink",
    "nil_argument_diagnostic",
    "condition_diagnostic",
]
