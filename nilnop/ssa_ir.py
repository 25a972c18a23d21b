"""
nilnop.ssa_ir
=============

Single-assignment IR consumed by the nilness engine.

A :class:`Program` holds :class:`Package` objects, which hold
:class:`Function` objects.  A function body is a list of
:class:`BasicBlock` objects, each a straight-line sequence of
instructions ending (optionally) in an :class:`If` terminator.  Blocks
carry their CFG successors and predecessors and, once linked, their
immediate dominator and dominator-tree children.

Values are :class:`Value` objects tagged with a :class:`ValueKind`.  The
set of kinds is closed: the classifier in :mod:`nilnop.nilness` handles
each one explicitly.

Public API
----------
    ValueKind        - closed set of value kinds
    Value            - a single-assignment value (identity by id)
    Callee           - declared identity of a function or method
    CallInstruction  - a static or dynamic call
    BinOp            - binary operation (the comparisons of interest)
    If               - two-way conditional terminator
    BasicBlock       - a basic block
    Function         - one function body
    Package, Program - containers used for target resolution
    FunctionBuilder  - programmatic construction of function bodies

Typical usage::

    from nilnop.ssa_ir import Callee, FunctionBuilder, Program

    fb = FunctionBuilder("a", "f3")
    b0 = fb.new_block()
    fb.call(b0, Callee("a", "Wrap"), fb.const_nil())
    fn = fb.finish()

Implementation notes
--------------------
* Value identity is a process-unique integer drawn from a shared
  counter.  Two values are equal only when they are the same value;
  structurally identical values are different values.
* Dominator information is filled in by :func:`nilnop.dominators.link_blocks`,
  which :meth:`FunctionBuilder.finish` and the dump loader both call.
"""

from __future__ import annotations

import enum
import itertools
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from nilnop.diagnostics import NO_LOCATION, SourceLocation

# ---------------------------------------------------------------------------
# Value kinds
# ---------------------------------------------------------------------------


class ValueKind(enum.Enum):
    """Classification of an IR value."""

    ALLOCATION = "alloc"
    FIELD_ADDRESS = "field-addr"
    INDEX_ADDRESS = "index-addr"
    FREE_VARIABLE = "free-var"
    FUNCTION_LITERAL = "func-ref"
    GLOBAL_VARIABLE = "global"
    CHANNEL_CREATION = "make-chan"
    CLOSURE_CREATION = "make-closure"
    INTERFACE_WRAP = "change-interface"          # pass-through conversion
    INTERFACE_CONSTRUCTION = "make-interface"    # boxes a concrete value
    MAP_CREATION = "make-map"
    SLICE_CREATION = "make-slice"
    SLICE_RESLICE = "slice"
    SLICE_TO_FIXED_ARRAY_POINTER = "slice-to-array-ptr"
    CONSTANT = "const"
    OTHER = "other"


#: Kinds whose ``inner`` operand must be set.
WRAPPER_KINDS = frozenset({
    ValueKind.INTERFACE_WRAP,
    ValueKind.SLICE_RESLICE,
    ValueKind.SLICE_TO_FIXED_ARRAY_POINTER,
})


# ---------------------------------------------------------------------------
# Value
# ---------------------------------------------------------------------------

_value_ids = itertools.count()


def _fresh_value_id() -> int:
    return next(_value_ids)


class Value:
    """A single-assignment IR value.

    Attributes
    ----------
    id : int
        Unique (per-process) numeric identifier; the only thing equality
        and hashing look at.
    kind : ValueKind
    name : str
        Display name (``t3``, ``err``, ``nil:error``).
    inner : Value or None
        Operand of wrapper kinds.
    result_len : int
        Array length for ``SLICE_TO_FIXED_ARRAY_POINTER``.
    is_nil : bool
        For constants: whether this is the nil literal (or the zero value
        of a pointer-like type).
    literal : str
        Constant text, for display.
    """

    __slots__ = ("id", "kind", "name", "inner", "result_len", "is_nil", "literal")

    def __init__(
        self,
        kind: ValueKind,
        name: str = "",
        inner: Optional["Value"] = None,
        result_len: int = 0,
        is_nil: bool = False,
        literal: str = "",
    ) -> None:
        if kind in WRAPPER_KINDS and inner is None:
            raise ValueError(f"{kind.value} value requires an inner operand")
        self.id: int = _fresh_value_id()
        self.kind = kind
        self.name = name or f"v{self.id}"
        self.inner = inner
        self.result_len = result_len
        self.is_nil = is_nil
        self.literal = literal

    def __repr__(self) -> str:
        return f"Value(id={self.id}, kind={self.kind.value!r}, name={self.name!r})"

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, Value):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# Callees and instructions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Callee:
    """Declared identity of a function or method.

    Two callees are the same callable exactly when package path, name and
    receiver type all agree.
    """
    pkg_path: str
    name: str
    recv: Optional[str] = None

    @property
    def has_receiver(self) -> bool:
        return self.recv is not None

    @property
    def display_name(self) -> str:
        if self.recv:
            return f"{self.recv}.{self.name}"
        return self.name

    def __str__(self) -> str:
        return f"{self.pkg_path}.{self.display_name}"


@dataclass(eq=False)
class Instruction:
    """Base of all instructions.  ``value`` is the defined result, if any."""
    value: Optional[Value] = None
    location: SourceLocation = NO_LOCATION


@dataclass(eq=False)
class ValueInstr(Instruction):
    """Defines a non-call, non-comparison value (alloc, conversions, phi, ...)."""
    operands: Tuple[Value, ...] = ()


@dataclass(eq=False)
class CallInstruction(Instruction):
    """A call.  ``callee`` is ``None`` for dynamic (indirect) calls.

    For method calls the receiver is ``args[0]``.
    """
    callee: Optional[Callee] = None
    args: Tuple[Value, ...] = ()


@dataclass(eq=False)
class BinOp(Instruction):
    op: str = "=="
    x: Optional[Value] = None
    y: Optional[Value] = None

    @property
    def is_equality(self) -> bool:
        return self.op in ("==", "!=")


@dataclass(eq=False)
class If(Instruction):
    """Two-way branch: ``succs[0]`` when ``cond`` holds, else ``succs[1]``."""
    cond: Optional[Value] = None


@dataclass(eq=False)
class Jump(Instruction):
    pass


@dataclass(eq=False)
class Return(Instruction):
    results: Tuple[Value, ...] = ()


@dataclass(eq=False)
class Panic(Instruction):
    arg: Optional[Value] = None


@dataclass(eq=False)
class Store(Instruction):
    addr: Optional[Value] = None
    val: Optional[Value] = None


# ---------------------------------------------------------------------------
# BasicBlock
# ---------------------------------------------------------------------------

class BasicBlock:
    """A basic block.

    Attributes
    ----------
    index : int
        Position within the owning function's block list.
    instrs : list[Instruction]
    succs : list[BasicBlock]
        CFG successors.  Two successors means a conditional branch.
    preds : list[BasicBlock]
        CFG predecessors (filled in by ``link_blocks``).
    idom : BasicBlock or None
        Immediate dominator; ``None`` for the entry and unreachable blocks.
    dominees : list[BasicBlock]
        Dominator-tree children, ordered by index.
    """

    __slots__ = ("index", "instrs", "succs", "preds", "idom", "dominees", "comment")

    def __init__(self, index: int, comment: str = "") -> None:
        self.index = index
        self.instrs: List[Instruction] = []
        self.succs: List[BasicBlock] = []
        self.preds: List[BasicBlock] = []
        self.idom: Optional[BasicBlock] = None
        self.dominees: List[BasicBlock] = []
        self.comment = comment

    @property
    def last(self) -> Optional[Instruction]:
        return self.instrs[-1] if self.instrs else None

    def calls(self) -> Iterator[CallInstruction]:
        for instr in self.instrs:
            if isinstance(instr, CallInstruction):
                yield instr

    def __repr__(self) -> str:
        return f"BasicBlock(index={self.index}, ninstrs={len(self.instrs)})"


# ---------------------------------------------------------------------------
# Function / Package / Program
# ---------------------------------------------------------------------------

class Function:
    """One function or method.

    ``blocks`` is empty for a declaration without a body.  When present,
    ``blocks[0]`` is the entry block.
    """

    def __init__(
        self,
        package: str,
        name: str,
        recv: Optional[str] = None,
        location: SourceLocation = NO_LOCATION,
    ) -> None:
        self.package = package
        self.name = name
        self.recv = recv
        self.location = location
        self.params: List[Value] = []
        self.free_vars: List[Value] = []
        self.blocks: List[BasicBlock] = []

    @property
    def callee(self) -> Callee:
        return Callee(self.package, self.name, self.recv)

    @property
    def qualified_name(self) -> str:
        return str(self.callee)

    @property
    def entry(self) -> Optional[BasicBlock]:
        return self.blocks[0] if self.blocks else None

    @property
    def has_body(self) -> bool:
        return bool(self.blocks)

    def __repr__(self) -> str:
        return f"Function({self.qualified_name!r}, blocks={len(self.blocks)})"


@dataclass
class NamedType:
    """A named type and its method set."""
    name: str
    methods: Dict[str, Function] = field(default_factory=OrderedDict)


class Package:
    def __init__(self, path: str) -> None:
        self.path = path
        self.functions: Dict[str, Function] = OrderedDict()
        self.types: Dict[str, NamedType] = OrderedDict()
        self.globals: Dict[str, Value] = OrderedDict()
        self.consts: Dict[str, Value] = OrderedDict()

    def member(self, name: str) -> Union[Function, NamedType, Value, None]:
        """Look up a package-level object by name."""
        for table in (self.functions, self.types, self.globals, self.consts):
            if name in table:
                return table[name]
        return None

    def add_function(self, fn: Function) -> Function:
        if fn.recv is None:
            self.functions[fn.name] = fn
        else:
            self.types.setdefault(fn.recv, NamedType(fn.recv)).methods[fn.name] = fn
        return fn

    def all_functions(self) -> Iterator[Function]:
        yield from self.functions.values()
        for t in self.types.values():
            yield from t.methods.values()

    def __repr__(self) -> str:
        return f"Package({self.path!r})"


class Program:
    def __init__(self) -> None:
        self.packages: Dict[str, Package] = OrderedDict()

    def package(self, path: str) -> Optional[Package]:
        return self.packages.get(path)

    def add_package(self, path: str) -> Package:
        return self.packages.setdefault(path, Package(path))

    def functions(self) -> Iterator[Function]:
        """Every function with a body, in declaration order."""
        for pkg in self.packages.values():
            for fn in pkg.all_functions():
                if fn.has_body:
                    yield fn

    def __repr__(self) -> str:
        return f"Program(packages={list(self.packages)})"


# ===========================================================================
# FunctionBuilder
# ===========================================================================

class FunctionBuilder:
    """Builds a :class:`Function` body instruction by instruction.

    Value-creating helpers that only make a value (``alloc``,
    ``const_nil`` ...) do not emit an instruction; helpers taking a
    block (``call``, ``binop``, ``define``) append to it.
    """

    def __init__(
        self,
        package: str,
        name: str,
        recv: Optional[str] = None,
        location: SourceLocation = NO_LOCATION,
    ) -> None:
        self.fn = Function(package, name, recv=recv, location=location)

    # ----- blocks -------------------------------------------------------------

    def new_block(self, comment: str = "") -> BasicBlock:
        b = BasicBlock(len(self.fn.blocks), comment=comment)
        self.fn.blocks.append(b)
        return b

    def if_(
        self,
        block: BasicBlock,
        cond: Value,
        then_block: BasicBlock,
        else_block: BasicBlock,
        location: SourceLocation = NO_LOCATION,
    ) -> If:
        instr = If(cond=cond, location=location)
        block.instrs.append(instr)
        block.succs = [then_block, else_block]
        return instr

    def jump(self, block: BasicBlock, target: BasicBlock) -> Jump:
        instr = Jump()
        block.instrs.append(instr)
        block.succs = [target]
        return instr

    def ret(self, block: BasicBlock, *results: Value) -> Return:
        instr = Return(results=tuple(results))
        block.instrs.append(instr)
        block.succs = []
        return instr

    # ----- values -------------------------------------------------------------

    def param(self, name: str) -> Value:
        v = Value(ValueKind.OTHER, name)
        self.fn.params.append(v)
        return v

    def free_var(self, name: str) -> Value:
        v = Value(ValueKind.FREE_VARIABLE, name)
        self.fn.free_vars.append(v)
        return v

    @staticmethod
    def const_nil(name: str = "nil") -> Value:
        return Value(ValueKind.CONSTANT, name, is_nil=True, literal="nil")

    @staticmethod
    def const(literal: str) -> Value:
        return Value(ValueKind.CONSTANT, literal, literal=literal)

    @staticmethod
    def global_(name: str) -> Value:
        return Value(ValueKind.GLOBAL_VARIABLE, name)

    @staticmethod
    def func_ref(callee: Callee) -> Value:
        return Value(ValueKind.FUNCTION_LITERAL, str(callee))

    def define(
        self,
        block: BasicBlock,
        kind: ValueKind,
        name: str = "",
        operands: Sequence[Value] = (),
        result_len: int = 0,
        location: SourceLocation = NO_LOCATION,
    ) -> Value:
        """Append a value-defining instruction of *kind* to *block*."""
        inner = operands[0] if kind in WRAPPER_KINDS else None
        v = Value(kind, name, inner=inner, result_len=result_len)
        block.instrs.append(ValueInstr(value=v, location=location, operands=tuple(operands)))
        return v

    def alloc(self, block: BasicBlock, name: str = "") -> Value:
        return self.define(block, ValueKind.ALLOCATION, name)

    def change_interface(self, block: BasicBlock, x: Value, name: str = "") -> Value:
        return self.define(block, ValueKind.INTERFACE_WRAP, name, (x,))

    def make_interface(self, block: BasicBlock, x: Value, name: str = "") -> Value:
        return self.define(block, ValueKind.INTERFACE_CONSTRUCTION, name, (x,))

    def slice(self, block: BasicBlock, x: Value, name: str = "") -> Value:
        return self.define(block, ValueKind.SLICE_RESLICE, name, (x,))

    def slice_to_array_ptr(
        self, block: BasicBlock, x: Value, length: int, name: str = ""
    ) -> Value:
        return self.define(
            block, ValueKind.SLICE_TO_FIXED_ARRAY_POINTER, name, (x,), result_len=length
        )

    def call(
        self,
        block: BasicBlock,
        callee: Optional[Callee],
        *args: Value,
        name: str = "",
        location: SourceLocation = NO_LOCATION,
    ) -> CallInstruction:
        result = Value(ValueKind.OTHER, name)
        instr = CallInstruction(value=result, location=location, callee=callee, args=tuple(args))
        block.instrs.append(instr)
        return instr

    def binop(
        self,
        block: BasicBlock,
        op: str,
        x: Value,
        y: Value,
        name: str = "",
        location: SourceLocation = NO_LOCATION,
    ) -> BinOp:
        instr = BinOp(value=Value(ValueKind.OTHER, name), location=location, op=op, x=x, y=y)
        block.instrs.append(instr)
        return instr

    # ----- completion ---------------------------------------------------------

    def finish(self) -> Function:
        """Link predecessors and dominators, and return the function."""
        from nilnop.dominators import link_blocks

        link_blocks(self.fn)
        return self.fn


__all__ = [
    "ValueKind",
    "WRAPPER_KINDS",
    "Value",
    "Callee",
    "Instruction",
    "ValueInstr",
    "CallInstruction",
    "BinOp",
    "If",
    "Jump",
    "Return",
    "Panic",
    "Store",
    "BasicBlock",
    "Function",
    "NamedType",
    "Package",
    "Program",
    "FunctionBuilder",
]
