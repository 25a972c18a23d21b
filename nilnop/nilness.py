"""
nilnop/nilness.py
═════════════════

Nilness lattice, dominating facts, and the intrinsic classifier.

A value's nilness is one of three answers: definitely nil, definitely
not nil, or unknown.  Some values answer the question by their
construction alone (an allocation is never nil, the nil literal always
is).  All others are looked up in the stack of facts established by
dominating ``x == nil`` / ``x != nil`` branches.

The stack is persistent: :meth:`FactStack.push` returns a new stack and
leaves the receiver untouched, so sibling subtrees of the dominator tree
can share a common prefix without ever observing each other's facts.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from nilnop.ssa_ir import Value, ValueKind


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: NILNESS
# ═════════════════════════════════════════════════════════════════════════

class Nilness(enum.Enum):
    """Three-valued nilness.  Negation flips the sign of the value."""
    NON_NIL = -1
    UNKNOWN = 0
    NIL = 1

    def negate(self) -> "Nilness":
        return Nilness(-self.value)

    def __str__(self) -> str:
        return _NILNESS_STRINGS[self.value + 1]


_NILNESS_STRINGS = ("non-nil", "unknown", "nil")


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: FACTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Fact:
    """Records that a block is dominated by ``value == nil`` or ``value != nil``."""
    value: Value
    nilness: Nilness

    def negate(self) -> "Fact":
        return Fact(self.value, self.nilness.negate())

    def __str__(self) -> str:
        return f"{self.value.name} is {self.nilness}"


def negate_facts(facts: Iterable[Fact]) -> Tuple[Fact, ...]:
    return tuple(f.negate() for f in facts)


def expand_facts(fact: Fact) -> Tuple[Fact, ...]:
    """
    Return *fact* plus the same fact about every value it wraps.

    An interface-to-interface conversion is nil exactly when its operand
    is, so a fact about the outer value holds for each inner value of the
    chain.  Expanding lets a later lookup match whichever form of the
    value a comparison or call argument happens to use.

    Only ``INTERFACE_WRAP`` is expanded.  The classifier's own recursive
    unwrapping covers the other direction, where the nilness of the inner
    value is intrinsic (a nil constant converted to an interface).
    """
    ff: List[Fact] = [fact]
    while fact.value.kind is ValueKind.INTERFACE_WRAP:
        fact = Fact(fact.value.inner, fact.nilness)
        ff.append(fact)
    return tuple(ff)


class FactStack:
    """
    Immutable stack of facts, newest on top.

    Implemented as a cons list: ``push`` allocates one cell per fact and
    shares the rest.

    >>> s1 = FactStack.EMPTY.push(Fact(x, Nilness.NIL))
    >>> s2 = s1.push(Fact(y, Nilness.NON_NIL))
    >>> s1.lookup(y)
    <Nilness.UNKNOWN: 0>
    """

    __slots__ = ("_head", "_tail", "_size")

    EMPTY: "FactStack"

    def __init__(
        self,
        head: Optional[Fact] = None,
        tail: Optional["FactStack"] = None,
    ) -> None:
        self._head = head
        self._tail = tail
        self._size = 0 if tail is None else tail._size + 1

    def push(self, *facts: Fact) -> "FactStack":
        """Return a new stack with *facts* pushed in order (last on top)."""
        stack = self
        for f in facts:
            stack = FactStack(f, stack)
        return stack

    def lookup(self, value: Value) -> Nilness:
        """Nilness recorded for *value* by the most recent fact, else UNKNOWN."""
        for f in self:
            if f.value == value:
                return f.nilness
        return Nilness.UNKNOWN

    def __iter__(self) -> Iterator[Fact]:
        node = self
        while node._tail is not None:
            yield node._head
            node = node._tail

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __repr__(self) -> str:
        return f"FactStack([{', '.join(str(f) for f in self)}])"


FactStack.EMPTY = FactStack()


# ═════════════════════════════════════════════════════════════════════════
#  PART 3: CLASSIFIER
# ═════════════════════════════════════════════════════════════════════════

#: Kinds that can never hold nil.
INTRINSICALLY_NON_NIL = frozenset({
    ValueKind.ALLOCATION,
    ValueKind.FIELD_ADDRESS,
    ValueKind.FREE_VARIABLE,
    ValueKind.FUNCTION_LITERAL,
    ValueKind.GLOBAL_VARIABLE,
    ValueKind.INDEX_ADDRESS,
    ValueKind.CHANNEL_CREATION,
    ValueKind.CLOSURE_CREATION,
    ValueKind.INTERFACE_CONSTRUCTION,
    ValueKind.MAP_CREATION,
    ValueKind.SLICE_CREATION,
})


def nilness_of(stack: FactStack, v: Value) -> Nilness:
    """
    Report whether *v* is definitely nil, definitely not nil, or unknown
    given the dominating *stack* of facts.
    """
    kind = v.kind

    # Interface conversions and reslices are nil exactly when their
    # operand is; an answer about the operand answers for the wrapper.
    if kind is ValueKind.INTERFACE_WRAP or kind is ValueKind.SLICE_RESLICE:
        underlying = nilness_of(stack, v.inner)
        if underlying is not Nilness.UNKNOWN:
            return underlying

    elif kind is ValueKind.SLICE_TO_FIXED_ARRAY_POINTER:
        nn = nilness_of(stack, v.inner)
        if v.result_len > 0:
            if nn is Nilness.NIL:
                # Converting a nil slice to a non-empty array pointer
                # aborts before the result exists.
                return Nilness.UNKNOWN
            return Nilness.NON_NIL
        return nn

    if kind in INTRINSICALLY_NON_NIL:
        return Nilness.NON_NIL
    if kind is ValueKind.CONSTANT:
        # nil or the zero value of a pointer-like type; other constants
        # are not pointers
        return Nilness.NIL if v.is_nil else Nilness.UNKNOWN

    return stack.lookup(v)


__all__ = [
    "Nilness",
    "Fact",
    "FactStack",
    "negate_facts",
    "expand_facts",
    "INTRINSICALLY_NON_NIL",
    "nilness_of",
]
