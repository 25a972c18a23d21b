"""
nilnop/checker.py
═════════════════

Runs the nilness walker over every function of a program.

Architecture
────────────

  ┌──────────────────────────────────────────────────────┐
  │                    NilnopChecker                     │
  │   targets ──► resolve_targets ──► TargetValidator    │
  │                                        │             │
  │   Program.functions() ──► run_function (per fn,      │
  │                            optionally in a pool)     │
  │                                        │             │
  │                              DiagnosticSink          │
  └────────────────────────────────────────┼─────────────┘
                                           ▼
                                   CheckerRunResults

Functions share nothing mutable except the sink, so they can be analysed
concurrently; results are sorted by location for stable output.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from nilnop.diagnostics import (
    CATEGORY_CONDITION,
    CATEGORY_NIL_ARGUMENT,
    Diagnostic,
    DiagnosticSeverity,
    DiagnosticSink,
)
from nilnop.ssa_ir import Function, Program
from nilnop.targets import ResolvedTarget, Target, TargetValidator, resolve_targets
from nilnop.walker import run_function

logger = logging.getLogger(__name__)

CATEGORY_INTERNAL = "internal"


@dataclass
class CheckerOptions:
    """
    Attributes
    ----------
    report_conditions : emit ``cond`` diagnostics for degenerate comparisons
    jobs              : number of worker threads (1 = sequential)
    """
    report_conditions: bool = True
    jobs: int = 1


@dataclass
class CheckerRunResults:
    """
    Aggregate results of one run.

    Attributes
    ----------
    diagnostics       : All diagnostics, sorted by location
    functions_checked : Number of function bodies analysed
    stats             : Timing statistics
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    functions_checked: int = 0
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def findings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.category != CATEGORY_INTERNAL]

    @property
    def internal_errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.category == CATEGORY_INTERNAL]

    def by_category(self, category: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.category == category]

    def by_file(self, file: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.location.file == file]

    @property
    def total_count(self) -> int:
        return len(self.findings)

    def to_json_lines(self) -> str:
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        nil_args = len(self.by_category(CATEGORY_NIL_ARGUMENT))
        conds = len(self.by_category(CATEGORY_CONDITION))
        elapsed = self.stats.get("elapsed_ms", 0.0)
        lines = [
            f"nilnop: {self.total_count} finding(s) in "
            f"{self.functions_checked} function(s) ({elapsed:.1f}ms)",
            f"  nil arguments:         {nil_args}",
            f"  degenerate conditions: {conds}",
        ]
        if self.internal_errors:
            lines.append(f"  internal errors:       {len(self.internal_errors)}")
        return "\n".join(lines)


class NilnopChecker:
    """
    Checks functions against a fixed list of resolved targets.

    Usage
    -----
    >>> checker = NilnopChecker(resolve_targets(program, targets))
    >>> results = checker.run(program.functions())
    >>> print(results.summary())
    """

    def __init__(
        self,
        targets: Sequence[ResolvedTarget],
        options: Optional[CheckerOptions] = None,
    ) -> None:
        self.validator = TargetValidator(targets)
        self.options = options or CheckerOptions()

    def check_function(self, fn: Function, sink: DiagnosticSink) -> None:
        try:
            run_function(
                fn, self.validator, sink=sink,
                report_conditions=self.options.report_conditions,
            )
        except Exception as exc:
            # report the failure and carry on with the other functions
            logger.exception("Analysis of %s failed", fn.qualified_name)
            sink.report(Diagnostic(
                error_id="checkerInternalError",
                message=f"analysis of {fn.qualified_name} failed: {exc}",
                category=CATEGORY_INTERNAL,
                location=fn.location,
                severity=DiagnosticSeverity.INFORMATION,
                function=fn.qualified_name,
            ))

    def run(self, functions: Iterable[Function]) -> CheckerRunResults:
        fns = [f for f in functions if f.has_body]
        sink = DiagnosticSink()
        t0 = time.monotonic()

        jobs = max(1, self.options.jobs)
        if jobs == 1 or len(fns) < 2:
            for fn in fns:
                self.check_function(fn, sink)
        else:
            logger.info("Checking %d function(s) with %d worker(s)", len(fns), jobs)
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                # list() re-raises anything check_function did not handle
                list(pool.map(lambda f: self.check_function(f, sink), fns))

        elapsed_ms = (time.monotonic() - t0) * 1000.0
        results = CheckerRunResults(
            diagnostics=sink.sorted(),
            functions_checked=len(fns),
            stats={"elapsed_ms": elapsed_ms},
        )
        logger.info(
            "Checked %d function(s): %d finding(s)",
            results.functions_checked, results.total_count,
        )
        return results


def run_program(
    program: Program,
    targets: Iterable[Target],
    options: Optional[CheckerOptions] = None,
) -> CheckerRunResults:
    """Resolve *targets* against *program* and check every function.

    Configuration errors in *targets* are raised before any analysis.
    """
    resolved = resolve_targets(program, targets)
    return NilnopChecker(resolved, options).run(program.functions())


__all__ = [
    "CATEGORY_INTERNAL",
    "CheckerOptions",
    "CheckerRunResults",
    "NilnopChecker",
    "run_program",
]
