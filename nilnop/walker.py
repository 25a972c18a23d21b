"""
nilnop/walker.py
════════════════

Dominance-order traversal of one function.

The walker visits the reachable blocks of a function in dominator-tree
preorder, carrying the stack of nilness facts established by the
``x == nil`` / ``x != nil`` branches that dominate the block.  At each
call instruction it asks the :class:`~nilnop.targets.TargetValidator`
whether a target receives nil.  At each nil comparison it either

- reports the comparison as tautological or impossible, when both
  operands already have a known nilness and one of them is nil, and
  prunes the successor that can no longer be reached; or
- pushes what the comparison teaches onto the stack for the successor
  blocks that can only be entered through it.

Because the traversal follows the dominator tree, each block has exactly
one fact context and facts disappear as soon as their subtree is done.
A block reachable through a *critical edge* (a successor with several
predecessors) learns nothing from the branch: it can also be entered
along a path where the fact does not hold.

The traversal uses an explicit work-list of ``(block, stack)`` pairs, so
deeply nested control flow cannot exhaust the interpreter stack.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from nilnop.diagnostics import Diagnostic, DiagnosticSink, condition_diagnostic
from nilnop.nilness import (
    Fact,
    FactStack,
    Nilness,
    expand_facts,
    negate_facts,
    nilness_of,
)
from nilnop.ssa_ir import BasicBlock, BinOp, Function, If, Value
from nilnop.targets import TargetValidator

logger = logging.getLogger(__name__)

#: A block paired with the facts that hold on entry to it.
WorkItem = Tuple[BasicBlock, FactStack]


def binop_definitions(fn: Function) -> Dict[Value, BinOp]:
    """Map each binop result value of *fn* to its defining instruction."""
    defs: Dict[Value, BinOp] = {}
    for b in fn.blocks:
        for instr in b.instrs:
            if isinstance(instr, BinOp) and instr.value is not None:
                defs[instr.value] = instr
    return defs


def equality_condition(
    block: BasicBlock,
    defs: Dict[Value, BinOp],
) -> Optional[Tuple[BinOp, BasicBlock, BasicBlock]]:
    """
    If *block* ends with an ``==`` or ``!=`` comparison, return the
    comparison and its equal and not-equal successors.  Any other shape
    returns ``None``.
    """
    last = block.last
    if not isinstance(last, If) or len(block.succs) != 2 or last.cond is None:
        return None
    binop = defs.get(last.cond)
    if binop is None or not binop.is_equality or binop.x is None or binop.y is None:
        return None
    if binop.op == "==":
        return binop, block.succs[0], block.succs[1]
    return binop, block.succs[1], block.succs[0]


class DominanceWalker:
    """
    Runs the nilness analysis over a single function.

    Parameters
    ----------
    fn                : Function with linked blocks
    validator         : Target validator shared across functions
    sink              : Optional sink; every finding is also reported there
    report_conditions : Emit ``cond`` diagnostics for degenerate comparisons
    """

    def __init__(
        self,
        fn: Function,
        validator: TargetValidator,
        sink: Optional[DiagnosticSink] = None,
        report_conditions: bool = True,
    ) -> None:
        self.fn = fn
        self.validator = validator
        self.sink = sink
        self.report_conditions = report_conditions
        self.findings: List[Diagnostic] = []
        self._defs = binop_definitions(fn)
        self._seen = [False] * len(fn.blocks)

    # ----- public -------------------------------------------------------------

    def run(self) -> List[Diagnostic]:
        """Visit the entry block with no facts and everything it dominates."""
        if not self.fn.has_body:
            return []
        work: List[WorkItem] = [(self.fn.blocks[0], FactStack.EMPTY)]
        while work:
            block, stack = work.pop()
            children = self._visit(block, stack)
            # reversed, so dominees are visited in order
            work.extend(reversed(children))
        return self.findings

    # ----- internals ----------------------------------------------------------

    def _report(self, diag: Diagnostic) -> None:
        self.findings.append(diag)
        if self.sink is not None:
            self.sink.report(diag)

    def _visit(self, b: BasicBlock, stack: FactStack) -> List[WorkItem]:
        if self._seen[b.index]:
            return []
        self._seen[b.index] = True

        name = self.fn.qualified_name
        for call in b.calls():
            diag = self.validator.validate(stack, call, function=name)
            if diag is not None:
                logger.debug("%s: %s", diag.location, diag.message)
                self._report(diag)

        cmp = equality_condition(b, self._defs)
        if cmp is None:
            return [(d, stack) for d in b.dominees]

        binop, tsucc, fsucc = cmp
        xnil = nilness_of(stack, binop.x)
        ynil = nilness_of(stack, binop.y)

        if xnil is not Nilness.UNKNOWN and ynil is not Nilness.UNKNOWN and (
            xnil is Nilness.NIL or ynil is Nilness.NIL
        ):
            return self._degenerate(b, binop, xnil, ynil, tsucc, fsucc, stack)

        if xnil is Nilness.NIL or ynil is Nilness.NIL:
            # "x == nil" or "nil == y" with the other side unknown:
            # the equal successor learns the other side is nil.
            other = binop.y if xnil is Nilness.NIL else binop.x
            new_facts = expand_facts(Fact(other, Nilness.NIL))
            items: List[WorkItem] = []
            for d in b.dominees:
                s = stack
                # Facts only cross non-critical edges.
                if len(d.preds) == 1:
                    if d is tsucc:
                        s = stack.push(*new_facts)
                    elif d is fsucc:
                        s = stack.push(*negate_facts(new_facts))
                items.append((d, s))
            logger.debug(
                "%s block %d: learned %s", name, b.index,
                ", ".join(str(f) for f in new_facts),
            )
            return items

        return [(d, stack) for d in b.dominees]

    def _degenerate(
        self,
        b: BasicBlock,
        binop: BinOp,
        xnil: Nilness,
        ynil: Nilness,
        tsucc: BasicBlock,
        fsucc: BasicBlock,
        stack: FactStack,
    ) -> List[WorkItem]:
        """Both sides known, at least one nil: the outcome is fixed."""
        if (xnil is ynil) == (binop.op == "=="):
            adj = "tautological"
        else:
            adj = "impossible"
        if self.report_conditions and binop.location.is_valid:
            self._report(condition_diagnostic(
                binop.location, adj, xnil, binop.op, ynil,
                function=self.fn.qualified_name,
            ))

        # A successor whose only incoming edge can't be taken is
        # unreachable; so is everything it dominates.
        skip = fsucc if xnil is ynil else tsucc
        return [
            (d, stack) for d in b.dominees
            if not (d is skip and len(d.preds) == 1)
        ]


def run_function(
    fn: Function,
    validator: TargetValidator,
    sink: Optional[DiagnosticSink] = None,
    report_conditions: bool = True,
) -> List[Diagnostic]:
    """Analyse *fn* and return its findings (also reported to *sink*)."""
    return DominanceWalker(
        fn, validator, sink=sink, report_conditions=report_conditions
    ).run()


__all__ = [
    "binop_definitions",
    "equality_condition",
    "DominanceWalker",
    "run_function",
]
