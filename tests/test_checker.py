# tests/test_checker.py
"""
End-to-end tests: the ``a`` fixture program checked against the
``Wrap`` and ``S.Wrap`` targets, plus driver behaviour (threading,
idempotence, graceful degradation).
"""

import json

import pytest

from nilnop.checker import (
    CATEGORY_INTERNAL,
    CheckerOptions,
    NilnopChecker,
    run_program,
)
from nilnop.errors import InvalidFuncNameError, NotAFunctionError
from nilnop.ssa_ir import Function, FunctionBuilder
from nilnop.targets import Target, resolve_targets
from tests.conftest import (
    A_EXPECTED_NIL_CALLS,
    A_TARGETS,
    WRAP,
    loc,
    new_builder,
    wrap_program,
)


def nil_call_sites(results):
    return [(d.location.file, d.location.line) for d in results.by_category("nilnop")]


class TestAProgram:

    def test_reports_every_nil_argument(self, a_program):
        results = run_program(a_program, A_TARGETS)
        assert nil_call_sites(results) == A_EXPECTED_NIL_CALLS

    def test_no_other_findings(self, a_program):
        results = run_program(a_program, A_TARGETS)
        assert results.by_category("cond") == []
        assert results.internal_errors == []
        assert results.total_count == len(A_EXPECTED_NIL_CALLS)

    def test_messages(self, a_program):
        results = run_program(a_program, A_TARGETS)
        messages = {d.location.file: d.message for d in results.findings}
        assert messages["a.go"] == "nil is passed to Wrap (argument 0)"
        assert messages["b.go"] == "nil is passed to S.Wrap (argument 0)"

    def test_function_names(self, a_program):
        results = run_program(a_program, A_TARGETS)
        assert [d.function for d in results.by_file("a.go")] == ["a.f1", "a.f2", "a.f3", "a.f4"]
        assert [d.function for d in results.by_file("b.go")] == ["a.g1", "a.g2", "a.g3", "a.g4"]

    def test_function_target_only(self, a_program):
        results = run_program(a_program, [Target("a", "Wrap", 0)])
        assert {d.location.file for d in results.findings} == {"a.go"}

    def test_method_target_only(self, a_program):
        results = run_program(a_program, [Target("a", "S.Wrap", 0)])
        assert {d.location.file for d in results.findings} == {"b.go"}

    def test_unresolvable_targets_find_nothing(self, a_program):
        results = run_program(a_program, [Target("zzz", "Wrap"), Target("a", "T.Wrap")])
        assert results.findings == []
        assert results.functions_checked > 0

    def test_out_of_range_position_finds_nothing(self, a_program):
        results = run_program(a_program, [Target("a", "Wrap", 5)])
        assert results.findings == []

    def test_bad_target_aborts_before_analysis(self, a_program):
        with pytest.raises(InvalidFuncNameError):
            run_program(a_program, [Target("a", "S.T.Wrap")])
        with pytest.raises(NotAFunctionError):
            run_program(a_program, [Target("a", "s")])

    def test_functions_checked_counts_bodies(self, a_program):
        results = run_program(a_program, A_TARGETS)
        # 8 test functions + doSomething + Wrap + S.Wrap
        assert results.functions_checked == 11


class TestDriver:

    def test_idempotent(self, a_program):
        first = run_program(a_program, A_TARGETS)
        second = run_program(a_program, A_TARGETS)
        assert first.diagnostics == second.diagnostics

    @pytest.mark.parametrize("jobs", [2, 4, 16])
    def test_threaded_matches_sequential(self, a_program, jobs):
        sequential = run_program(a_program, A_TARGETS)
        threaded = run_program(a_program, A_TARGETS, CheckerOptions(jobs=jobs))
        assert threaded.diagnostics == sequential.diagnostics

    def test_results_sorted_by_location(self, a_program):
        results = run_program(a_program, A_TARGETS, CheckerOptions(jobs=4))
        locations = [d.location for d in results.diagnostics]
        assert locations == sorted(locations)

    def test_report_conditions_option(self):
        fb = new_builder()
        b0, b1, b2 = fb.new_block(), fb.new_block(), fb.new_block()
        x = fb.alloc(b0, "x")
        cmp = fb.binop(b0, "==", x, FunctionBuilder.const_nil(), location=loc(4))
        fb.if_(b0, cmp.value, b1, b2)
        fb.ret(b1)
        fb.ret(b2)
        fn = fb.finish()
        resolved = resolve_targets(wrap_program(), A_TARGETS)
        on = NilnopChecker(resolved).run([fn])
        off = NilnopChecker(resolved, CheckerOptions(report_conditions=False)).run([fn])
        assert [d.error_id for d in on.diagnostics] == ["condImpossible"]
        assert off.diagnostics == []

    def test_declarations_are_skipped(self):
        checker = NilnopChecker(resolve_targets(wrap_program(), A_TARGETS))
        results = checker.run([Function("a", "decl")])
        assert results.functions_checked == 0

    def test_failing_function_degrades_to_internal_diagnostic(self, monkeypatch):
        import nilnop.checker as checker_module

        def boom(fn, *args, **kwargs):
            if fn.name == "bad":
                raise RuntimeError("corrupt block")
            return []

        monkeypatch.setattr(checker_module, "run_function", boom)
        good = new_builder("good")
        good.ret(good.new_block())
        bad = new_builder("bad")
        bad.ret(bad.new_block())
        results = NilnopChecker([]).run([good.finish(), bad.finish()])
        assert results.findings == []
        assert len(results.internal_errors) == 1
        diag = results.internal_errors[0]
        assert diag.category == CATEGORY_INTERNAL
        assert "corrupt block" in diag.message
        assert diag.function == "a.bad"


class TestRunResults:

    def test_json_lines(self, a_program):
        results = run_program(a_program, A_TARGETS)
        lines = results.to_json_lines().splitlines()
        assert len(lines) == len(A_EXPECTED_NIL_CALLS)
        first = json.loads(lines[0])
        assert first == {
            "file": "a.go",
            "linenr": 10,
            "column": 6,
            "severity": "warning",
            "message": "nil is passed to Wrap (argument 0)",
            "category": "nilnop",
            "errorId": "nilPassed",
            "function": "a.f1",
            "evidence": {"callee": "Wrap", "argPos": 0},
        }

    def test_gcc_format(self, a_program):
        results = run_program(a_program, A_TARGETS)
        first = results.to_gcc_format().splitlines()[0]
        assert first == "a.go:10:6: warning: nil is passed to Wrap (argument 0) [nilPassed]"

    def test_summary(self, a_program):
        text = run_program(a_program, A_TARGETS).summary()
        assert "8 finding(s)" in text
        assert "nil arguments:         8" in text


def test_checker_validator_is_shared():
    resolved = resolve_targets(wrap_program(), A_TARGETS)
    checker = NilnopChecker(resolved)
    assert len(checker.validator) == 2
    assert checker.validator.targets[0].callee == WRAP
