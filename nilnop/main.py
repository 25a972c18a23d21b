#!/usr/bin/env python3
"""nilnop/main.py - CLI entry-point for nilnop.

Usage examples
--------------
    # Report nil passed as the first argument of a.Wrap
    nilnop prog.ssa -t a:Wrap

    # Several dumps, a method target, JSON output
    nilnop a.ssa b.ssa -t a:S.Wrap:0 --format json -o findings.json

    # Targets from a file, four worker threads, no condition reports
    nilnop prog.ssa --targets targets.json -j 4 --no-cond

    # Show version and exit
    nilnop --version

A target file is a JSON list::

    [{"pkg_path": "a", "func_name": "Wrap", "arg_pos": 0}]

Exit codes
----------
    0   Success, no findings.
    1   One or more findings were emitted.
    2   Infrastructure or configuration failure (missing file, malformed
        dump, bad target, or a function whose analysis crashed).

The module doubles as ``python -m nilnop`` via ``nilnop/__main__.py``.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from nilnop import __version__
from nilnop.checker import CheckerOptions, CheckerRunResults, run_program
from nilnop.errors import ConfigurationError, IRLoadError
from nilnop.ssa_loader import load_files
from nilnop.targets import Target, load_target_file, parse_target_spec

_log = logging.getLogger("nilnop")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_FINDINGS: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``nilnop`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("nilnop")
    root.setLevel(level)
    # main() may run more than once per process (tests, embedding)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)


def _resolve_path(raw: str, label: str = "file") -> Path:
    """Resolve *raw* to an absolute ``Path``, raising on missing files."""
    p = Path(raw).expanduser().resolve()
    if not p.exists():
        _log.error("%s not found: %s", label, p)
        raise SystemExit(EXIT_INFRA)
    return p


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _emit_results(results: CheckerRunResults, fmt: str, stream: TextIO) -> None:
    """Write *results* to *stream* in the chosen format."""
    if fmt == "json":
        for diag in results.diagnostics:
            stream.write(diag.to_json_str() + "\n")
    elif fmt == "gcc":
        for diag in results.diagnostics:
            stream.write(diag.to_gcc_format() + "\n")
    else:
        for diag in results.diagnostics:
            stream.write(str(diag) + "\n")
        stream.write("\n" + results.summary() + "\n")


def _collect_targets(args: argparse.Namespace) -> List[Target]:
    targets: List[Target] = [parse_target_spec(t) for t in args.target or ()]
    if args.targets_file:
        path = _resolve_path(args.targets_file, "target file")
        targets.extend(load_target_file(path))
    return targets


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nilnop",
        description=(
            "nilnop - report nil passed to functions that must not receive it.\n\n"
            "Reads S-expression dumps of programs in single-assignment form\n"
            "and checks every call to the configured target functions."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              nilnop prog.ssa -t a:Wrap
              nilnop prog.ssa -t a:S.Wrap:0 --format json
              nilnop prog.ssa --targets targets.json -j 4
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "dumps",
        nargs="+",
        metavar="DUMP",
        help="S-expression IR dump file(s).",
    )

    g = parser.add_argument_group("targets")
    g.add_argument(
        "-t", "--target",
        action="append",
        default=None,
        metavar="PKG:NAME[:POS]",
        help="Function (NAME) or method (Type.NAME) whose argument POS "
             "(default 0, receiver not counted) must not be nil. Repeatable.",
    )
    g.add_argument(
        "--targets",
        dest="targets_file",
        default=None,
        metavar="FILE.json",
        help="JSON list of {pkg_path, func_name, arg_pos} objects.",
    )

    o = parser.add_argument_group("output")
    o.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout).',
    )
    o.add_argument(
        "-f", "--format",
        choices=["json", "gcc", "summary"],
        default="gcc",
        help="Output format (default: gcc).",
    )
    o.add_argument(
        "--no-cond",
        dest="report_conditions",
        action="store_false",
        help="Do not report tautological or impossible nil comparisons.",
    )

    r = parser.add_argument_group("runtime tuning")
    r.add_argument(
        "-j", "--jobs",
        type=int,
        default=1,
        metavar="N",
        help="Analyse functions on N worker threads (default: 1).",
    )
    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def run(args: argparse.Namespace) -> int:
    """Load, check, report.  Returns an exit code."""
    if args.jobs < 1:
        _log.error("--jobs must be at least 1, got %d", args.jobs)
        return EXIT_INFRA

    try:
        targets = _collect_targets(args)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    if not targets:
        _log.error("no targets given (use -t or --targets)")
        return EXIT_INFRA

    paths = [_resolve_path(d, "dump file") for d in args.dumps]
    try:
        program = load_files(paths)
    except IRLoadError as exc:
        _log.error("Failed to load IR dump: %s", exc)
        return EXIT_INFRA
    except OSError as exc:
        _log.error("Failed to read IR dump: %s", exc)
        return EXIT_INFRA

    options = CheckerOptions(report_conditions=args.report_conditions, jobs=args.jobs)
    try:
        results = run_program(program, targets, options)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    stream = _open_output(args.output)
    try:
        _emit_results(results, args.format, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()

    if results.internal_errors:
        # findings may be missing for these functions
        _log.error(
            "%d function(s) could not be analysed", len(results.internal_errors)
        )
        return EXIT_INFRA
    return EXIT_FINDINGS if results.findings else EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the nilnop CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        return run(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130  # Standard UNIX convention for SIGINT
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
