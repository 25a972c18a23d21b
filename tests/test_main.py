# tests/test_main.py
"""
Tests for the nilnop command-line interface.
"""

import json
import logging

import pytest

from nilnop import __version__
from nilnop.main import EXIT_FINDINGS, EXIT_INFRA, EXIT_OK, main
from tests.conftest import A_EXPECTED_NIL_CALLS


COND_PROGRAM = '''
(program (package "p"
  (func f (pos "p.go" 1 1)
    (block 0 (succs 1 2)
      (let x (alloc))
      (let c (binop == x (const nil)) (pos "p.go" 3 7))
      (if c))
    (block 1 (succs) (return))
    (block 2 (succs) (return)))))
'''


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("nilnop")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def cond_dump(tmp_path):
    path = tmp_path / "p.ssa"
    path.write_text(COND_PROGRAM, encoding="utf-8")
    return path


class TestExitCodes:

    def test_findings(self, a_dump, capsys):
        assert main([str(a_dump), "-t", "a:Wrap", "-t", "a:S.Wrap:0"]) == EXIT_FINDINGS
        out = capsys.readouterr().out.splitlines()
        assert len(out) == len(A_EXPECTED_NIL_CALLS)
        assert out[0] == "a.go:10:6: warning: nil is passed to Wrap (argument 0) [nilPassed]"

    def test_no_findings(self, a_dump, capsys):
        assert main([str(a_dump), "-t", "zzz:Wrap"]) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_crashed_analysis_is_not_a_clean_run(self, a_dump, monkeypatch, capsys):
        import nilnop.checker as checker_module

        def boom(fn, *args, **kwargs):
            raise RuntimeError("corrupt block")

        monkeypatch.setattr(checker_module, "run_function", boom)
        assert main([str(a_dump), "-t", "a:Wrap"]) == EXIT_INFRA
        assert "could not be analysed" in capsys.readouterr().err

    def test_missing_dump(self, tmp_path):
        assert main([str(tmp_path / "missing.ssa"), "-t", "a:Wrap"]) == EXIT_INFRA

    def test_malformed_dump(self, tmp_path):
        path = tmp_path / "bad.ssa"
        path.write_text("(program (package")
        assert main([str(path), "-t", "a:Wrap"]) == EXIT_INFRA

    def test_malformed_target(self, a_dump):
        assert main([str(a_dump), "-t", "a:Wrap:x"]) == EXIT_INFRA

    def test_invalid_func_name(self, a_dump, capsys):
        assert main([str(a_dump), "-t", "a:S.T.Wrap"]) == EXIT_INFRA
        assert "invalid FuncName S.T.Wrap" in capsys.readouterr().err

    def test_target_not_a_function(self, a_dump):
        assert main([str(a_dump), "-t", "a:s"]) == EXIT_INFRA

    def test_no_targets(self, a_dump):
        assert main([str(a_dump)]) == EXIT_INFRA

    def test_bad_jobs(self, a_dump):
        assert main([str(a_dump), "-t", "a:Wrap", "-j", "0"]) == EXIT_INFRA

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestOptions:

    def test_json_output_file(self, a_dump, tmp_path):
        out = tmp_path / "out" / "findings.json"
        rc = main([str(a_dump), "-t", "a:Wrap", "-t", "a:S.Wrap",
                   "--format", "json", "-o", str(out)])
        assert rc == EXIT_FINDINGS
        records = [json.loads(line) for line in out.read_text().splitlines()]
        assert [(r["file"], r["linenr"]) for r in records] == A_EXPECTED_NIL_CALLS
        assert {r["category"] for r in records} == {"nilnop"}

    def test_targets_file(self, a_dump, tmp_path, capsys):
        targets = tmp_path / "targets.json"
        targets.write_text(json.dumps([{"pkg_path": "a", "func_name": "S.Wrap", "arg_pos": 0}]))
        assert main([str(a_dump), "--targets", str(targets)]) == EXIT_FINDINGS
        out = capsys.readouterr().out
        assert "S.Wrap" in out
        assert "a.go" not in out

    def test_missing_targets_file(self, a_dump, tmp_path):
        assert main([str(a_dump), "--targets", str(tmp_path / "nope.json")]) == EXIT_INFRA

    def test_jobs(self, a_dump, capsys):
        main([str(a_dump), "-t", "a:Wrap", "-t", "a:S.Wrap"])
        sequential = capsys.readouterr().out
        main([str(a_dump), "-t", "a:Wrap", "-t", "a:S.Wrap", "-j", "4"])
        assert capsys.readouterr().out == sequential

    def test_condition_reported(self, cond_dump, capsys):
        assert main([str(cond_dump), "-t", "p:f"]) == EXIT_FINDINGS
        assert "impossible condition: non-nil == nil" in capsys.readouterr().out

    def test_no_cond(self, cond_dump, capsys):
        assert main([str(cond_dump), "-t", "p:f", "--no-cond"]) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_summary_format(self, a_dump, capsys):
        main([str(a_dump), "-t", "a:Wrap", "--format", "summary"])
        out = capsys.readouterr().out
        assert "nilnop: 4 finding(s)" in out

    def test_several_dumps(self, a_dump, cond_dump, capsys):
        rc = main([str(a_dump), str(cond_dump), "-t", "a:Wrap", "--format", "json"])
        assert rc == EXIT_FINDINGS
        records = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert {r["file"] for r in records} == {"a.go", "p.go"}

    def test_verbose_logs_to_stderr(self, a_dump, capsys):
        main(["-v", str(a_dump), "-t", "a:Wrap"])
        assert "Resolved 1 target(s)" in capsys.readouterr().err
