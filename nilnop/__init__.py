"""nilnop - report nil passed where it must never go.

Given a program in single-assignment form and a list of *targets*
(functions or methods, each with the position of an argument that must
not be nil), nilnop walks every function in dominator-tree order,
tracks what the dominating ``x == nil`` / ``x != nil`` branches prove,
and reports each call that passes a definitely-nil value to a target.
Comparisons whose outcome is already fixed are reported as tautological
or impossible.

Submodules
----------
ssa_ir
    IR data model (values, instructions, blocks, functions, packages)
    and ``FunctionBuilder``.
dominators
    Dominator tree computation and block linking.
nilness
    Three-valued nilness, the fact stack and the intrinsic classifier.
targets
    Target parsing (``PKG:NAME[:POS]``), resolution and validation.
walker
    Dominance-order traversal of one function.
checker
    Whole-program driver, optional thread pool, result aggregation.
ssa_loader
    S-expression IR dump reader.
diagnostics, errors
    Findings and the exception hierarchy.
main
    Command-line interface.

Usage
-----
Command-line::

    nilnop prog.ssa -t a:Wrap -t a:S.Wrap:0
    python -m nilnop prog.ssa --targets targets.json --format json

Programmatic::

    from nilnop import Target, run_program
    from nilnop.ssa_loader import load_file

    program = load_file("prog.ssa")
    results = run_program(program, [Target("a", "Wrap", 0)])
    print(results.summary())
"""

from __future__ import annotations

__version__: str = "0.1.0"

from nilnop.checker import (  # noqa: E402
    CheckerOptions,
    CheckerRunResults,
    NilnopChecker,
    run_program,
)
from nilnop.diagnostics import Diagnostic, SourceLocation  # noqa: E402
from nilnop.errors import (  # noqa: E402
    ConfigurationError,
    IRLoadError,
    NilnopError,
)
from nilnop.nilness import Nilness, nilness_of  # noqa: E402
from nilnop.targets import Target, parse_target_spec  # noqa: E402

__all__: list[str] = [
    "__version__",
    "CheckerOptions",
    "CheckerRunResults",
    "NilnopChecker",
    "run_program",
    "Diagnostic",
    "SourceLocation",
    "NilnopError",
    "ConfigurationError",
    "IRLoadError",
    "Nilness",
    "nilness_of",
    "Target",
    "parse_target_spec",
]
