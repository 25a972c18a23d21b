"""
nilnop/targets.py
═════════════════

Functions and methods that must never receive nil at a given argument.

A user names a target with a package path, a function name (``Wrap``) or
a ``Type.Method`` name (``S.Wrap``), and a 0-based argument position
that does not count the receiver.  Targets come from the command line as
``PKG:NAME[:POS]`` strings, parsed with a small Parsimonious PEG grammar,
or from a JSON file.

:func:`resolve_targets` turns them into :class:`ResolvedTarget` objects
against a loaded program, once per run.  A target whose package, type or
function does not exist in the program is inert: the analysed code may
simply never call it.  A malformed name, or a name that resolves to
something other than a function, is a configuration error and aborts
the run before anything is analysed.

:class:`TargetValidator` checks one call instruction against the
resolved targets under the current facts.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from nilnop.diagnostics import Diagnostic, nil_argument_diagnostic
from nilnop.errors import (
    InvalidFuncNameError,
    InvalidTargetError,
    NotAFunctionError,
    TargetSpecSyntaxError,
)
from nilnop.nilness import FactStack, Nilness, nilness_of
from nilnop.ssa_ir import CallInstruction, Callee, Function, Program

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1: TARGETS
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Target:
    """A function or method to be checked.

    Attributes
    ----------
    pkg_path  : Package path of the function or method.
    func_name : ``Name`` for a function, ``Type.Name`` for a method.
    arg_pos   : 0-indexed position of the argument that must not be nil.
    """
    pkg_path: str
    func_name: str
    arg_pos: int = 0

    def __str__(self) -> str:
        return f"{self.pkg_path}:{self.func_name}:{self.arg_pos}"


@dataclass(frozen=True)
class ResolvedTarget:
    """A target bound to the declared identity of a callable."""
    callee: Callee
    arg_pos: int

    @property
    def has_receiver(self) -> bool:
        return self.callee.has_receiver

    @property
    def arg_index(self) -> int:
        """Index into a call's argument list; the receiver occupies slot 0."""
        return self.arg_pos + 1 if self.has_receiver else self.arg_pos


# ═══════════════════════════════════════════════════════════════════
#  PART 2: TARGET SPEC GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

TARGET_GRAMMAR = Grammar(r'''
    target      = _ pkg_path ":" func_name arg_pos? _
    pkg_path    = ~r"[^:\s]+"
    func_name   = identifier ("." identifier)*
    identifier  = ~r"[A-Za-z_][A-Za-z0-9_]*"
    arg_pos     = ":" ~r"[0-9]+"
    _           = ~r"\s*"
''')


class _TargetVisitor(NodeVisitor):
    """Builds a :class:`Target` from a ``target`` parse tree."""

    def visit_target(self, node: Node, visited_children: List[Any]) -> Target:
        _, pkg_path, _, func_name, arg_pos, _ = visited_children
        pos = arg_pos[0] if isinstance(arg_pos, list) else 0
        return Target(pkg_path=pkg_path, func_name=func_name, arg_pos=pos)

    def visit_pkg_path(self, node: Node, visited_children: List[Any]) -> str:
        return node.text

    def visit_func_name(self, node: Node, visited_children: List[Any]) -> str:
        return node.text

    def visit_arg_pos(self, node: Node, visited_children: List[Any]) -> int:
        _, digits = visited_children
        return int(digits.text)

    def generic_visit(self, node: Node, visited_children: List[Any]) -> Any:
        return visited_children or node


def parse_target_spec(text: str) -> Target:
    """Parse ``PKG:NAME[:POS]`` into a :class:`Target`.

    >>> parse_target_spec("a:S.Wrap:0")
    Target(pkg_path='a', func_name='S.Wrap', arg_pos=0)
    """
    try:
        tree = TARGET_GRAMMAR.parse(text)
    except ParseError as exc:
        raise TargetSpecSyntaxError(
            text, "expected PKG:NAME[:POS]", cause=exc
        ) from exc
    try:
        return _TargetVisitor().visit(tree)
    except VisitationError as exc:
        raise TargetSpecSyntaxError(text, str(exc), cause=exc) from exc


def _target_from_json(entry: Any, source: str) -> Target:
    if not isinstance(entry, dict):
        raise TargetSpecSyntaxError(source, f"expected an object, got {entry!r}")
    try:
        pkg_path = entry["pkg_path"]
        func_name = entry["func_name"]
    except KeyError as exc:
        raise TargetSpecSyntaxError(source, f"missing key {exc.args[0]!r}") from exc
    arg_pos = entry.get("arg_pos", 0)
    if not isinstance(pkg_path, str) or not isinstance(func_name, str):
        raise TargetSpecSyntaxError(source, "pkg_path and func_name must be strings")
    if not isinstance(arg_pos, int) or isinstance(arg_pos, bool):
        raise TargetSpecSyntaxError(source, f"arg_pos must be an integer, got {arg_pos!r}")
    return Target(pkg_path=pkg_path, func_name=func_name, arg_pos=arg_pos)


def load_target_file(path: Union[str, Path]) -> List[Target]:
    """Read a JSON list of ``{"pkg_path", "func_name", "arg_pos"}`` objects."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise TargetSpecSyntaxError(str(p), f"invalid JSON: {exc}", cause=exc) from exc
    if not isinstance(data, list):
        raise TargetSpecSyntaxError(str(p), "expected a JSON list of targets")
    targets = [_target_from_json(entry, str(p)) for entry in data]
    logger.debug("Loaded %d target(s) from %s", len(targets), p)
    return targets


# ═══════════════════════════════════════════════════════════════════
#  PART 3: RESOLUTION
# ═══════════════════════════════════════════════════════════════════

def resolve_target(program: Program, target: Target) -> Optional[ResolvedTarget]:
    """Resolve one target, or return ``None`` when it names nothing."""
    if target.arg_pos < 0:
        raise InvalidTargetError(target, "argument position must not be negative")

    pkg = program.package(target.pkg_path)

    # function
    if "." not in target.func_name:
        obj = pkg.member(target.func_name) if pkg is not None else None
        if obj is None:
            logger.debug("Target %s not found; ignoring", target)
            return None
        if not isinstance(obj, Function):
            raise NotAFunctionError(target.pkg_path, target.func_name)
        return ResolvedTarget(obj.callee, target.arg_pos)

    parts = target.func_name.split(".")
    if len(parts) != 2:
        raise InvalidFuncNameError(target.func_name)

    # method
    recv, method = parts
    named = pkg.types.get(recv) if pkg is not None else None
    if named is None:
        logger.debug("Receiver type of target %s not found; ignoring", target)
        return None
    fn = named.methods.get(method)
    if fn is None:
        logger.debug("Method of target %s not found; ignoring", target)
        return None
    return ResolvedTarget(fn.callee, target.arg_pos)


def resolve_targets(program: Program, targets: Iterable[Target]) -> List[ResolvedTarget]:
    """Resolve every target, dropping the ones that name nothing.

    Raises a :class:`nilnop.errors.ConfigurationError` on the first
    target that can never be valid.
    """
    resolved: List[ResolvedTarget] = []
    for t in targets:
        r = resolve_target(program, t)
        if r is not None:
            resolved.append(r)
    logger.info("Resolved %d target(s)", len(resolved))
    return resolved


# ═══════════════════════════════════════════════════════════════════
#  PART 4: VALIDATION
# ═══════════════════════════════════════════════════════════════════

class TargetValidator:
    """
    Checks call instructions against an immutable list of resolved targets.

    The validator holds no state besides the targets, so one instance can
    serve any number of functions concurrently.
    """

    def __init__(self, targets: Sequence[ResolvedTarget]) -> None:
        self.targets: Tuple[ResolvedTarget, ...] = tuple(targets)
        by_callee: Dict[Callee, List[ResolvedTarget]] = OrderedDict()
        for t in self.targets:
            by_callee.setdefault(t.callee, []).append(t)
        self._by_callee = {c: tuple(ts) for c, ts in by_callee.items()}

    def validate(
        self,
        stack: FactStack,
        call: CallInstruction,
        function: str = "",
    ) -> Optional[Diagnostic]:
        """Return a diagnostic if *call* passes nil where a target forbids it."""
        if call.callee is None:
            return None
        for t in self._by_callee.get(call.callee, ()):
            idx = t.arg_index
            if idx >= len(call.args):
                logger.debug(
                    "%s: call to %s has %d argument(s); target wants index %d",
                    call.location, call.callee, len(call.args), idx,
                )
                continue
            if nilness_of(stack, call.args[idx]) is Nilness.NIL:
                return nil_argument_diagnostic(
                    call.location, call.callee.display_name, t.arg_pos, function
                )
            return None
        return None

    def __len__(self) -> int:
        return len(self.targets)

    def __repr__(self) -> str:
        return f"<TargetValidator targets={len(self.targets)}>"


__all__ = [
    "Target",
    "ResolvedTarget",
    "TARGET_GRAMMAR",
    "parse_target_spec",
    "load_target_file",
    "resolve_target",
    "resolve_targets",
    "TargetValidator",
]
