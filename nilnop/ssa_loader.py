"""
nilnop/ssa_loader.py
═════════════════════

Reads a textual dump of a program in single-assignment form into
:mod:`nilnop.ssa_ir` objects, the way a cppcheck addon reads a
``.dump`` file.  The dump is one ``(program ...)`` form parsed with the
``sexpdata`` library::

    (program
      (package "a"
        (global s)
        (type S (method Wrap (params s x)))
        (func Wrap (params x))
        (func f1 (pos "a.go" 5 1)
          (block 0 (succs 1 2)
            (let t0 (call "a" doSomething) (pos "a.go" 6 18))
            (let t1 (binop != t0 (const nil)) (pos "a.go" 7 9))
            (if t1))
          (block 1 (succs) (panic t0))
          (block 2 (succs)
            (let t2 (change-interface t0))
            (call "a" Wrap t2 (pos "a.go" 10 6))
            (return)))))

Package members
---------------
    (global NAME)                 package-level variable
    (const NAME [LITERAL])        package-level constant (nil if omitted)
    (type NAME (method NAME ITEM...)...)
    (func NAME ITEM...)
    (method RECV NAME ITEM...)

Function items: ``(pos FILE LINE [COL])``, ``(params NAME...)``,
``(free-vars NAME...)``, ``(block INDEX (succs INDEX...) STMT...)``.
A function with no blocks is a declaration.

Statements: ``(let NAME EXPR [POS])``, a bare call or other expression,
``(if COND [POS])``, ``(jump)``, ``(return X...)``, ``(panic X)``,
``(store ADDR X)``.

Expressions: see ``_SIMPLE_KINDS`` and ``_OTHER_HEADS`` below, plus
``const``, ``global``, ``func-ref``, ``make-closure``, ``call``,
``call-method``, ``call-dynamic``, ``binop``, ``slice-to-array-ptr`` and
``phi``.  Operands are names, ``nil``, integer literals, or inline
expressions.  A name may be used before the block that defines it
appears; only ``phi`` may refer to a value that (transitively) depends
on itself.

Depends on:
    - sexpdata          (S-expression parsing)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import sexpdata

from nilnop.diagnostics import NO_LOCATION, SourceLocation
from nilnop.dominators import link_blocks
from nilnop.errors import IRLoadError
from nilnop.ssa_ir import (
    BasicBlock,
    BinOp,
    CallInstruction,
    Callee,
    Function,
    If,
    Instruction,
    Jump,
    NamedType,
    Package,
    Panic,
    Program,
    Return,
    Store,
    Value,
    ValueInstr,
    ValueKind,
    WRAPPER_KINDS,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1: S-EXPRESSION PARSING LAYER
# ═══════════════════════════════════════════════════════════════════

def _parse_sexp(text: str, source: str = "") -> Any:
    """Parse one S-expression into nested lists of str / int / float.

    ``nil`` and ``t`` are kept as plain symbols rather than sexpdata's
    empty-list and true conversions.
    """
    try:
        parsed = sexpdata.loads(text, nil=None, true=None)
    except Exception as e:
        raise IRLoadError(f"failed to parse S-expression: {e}", source=source, cause=e) from e
    return _normalise(parsed)


class StringLiteral(str):
    """A quoted string from the dump, as opposed to a bare symbol."""


def _is_nil(x: Any) -> bool:
    return x == "nil" and not isinstance(x, StringLiteral)


def _normalise(obj: Any) -> Any:
    """Recursively normalise sexpdata output to plain Python types.

    Symbols become ``str`` and quoted strings :class:`StringLiteral`.
    """
    if isinstance(obj, list):
        return [_normalise(x) for x in obj]
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, (int, float)):
        return obj
    # sexpdata.Symbol → str
    if type(obj).__name__ == "Symbol":
        value = getattr(obj, "value", None)
        if callable(value):
            return str(value())
        return str(obj)
    if isinstance(obj, str):
        return StringLiteral(obj)
    if type(obj).__name__ == "Quoted":
        return ["quote", _normalise(getattr(obj, "_val", obj))]
    return str(obj)


def _head(form: Any) -> Optional[str]:
    if isinstance(form, list) and form and isinstance(form[0], str):
        return form[0]
    return None


# ═══════════════════════════════════════════════════════════════════
#  PART 2: EXPRESSION TABLES
# ═══════════════════════════════════════════════════════════════════

#: Heads that define a value of a fixed kind from operands.
_SIMPLE_KINDS: Dict[str, ValueKind] = {
    "alloc": ValueKind.ALLOCATION,
    "index-addr": ValueKind.INDEX_ADDRESS,
    "free-var": ValueKind.FREE_VARIABLE,
    "make-chan": ValueKind.CHANNEL_CREATION,
    "make-map": ValueKind.MAP_CREATION,
    "make-slice": ValueKind.SLICE_CREATION,
    "make-interface": ValueKind.INTERFACE_CONSTRUCTION,
    "change-interface": ValueKind.INTERFACE_WRAP,
    "slice": ValueKind.SLICE_RESLICE,
}

#: Heads that define an ordinary computed value.  The number is the index
#: of the single operand (anything else in the form is a literal).
_OTHER_HEADS: Dict[str, int] = {
    "type-assert": 1,
    "extract": 1,
    "convert": 1,
    "load": 1,
    "field": 1,
    "unop": 2,
}

_CALL_HEADS = frozenset({"call", "call-method", "call-dynamic"})

_VALUE_HEADS = (
    frozenset(_SIMPLE_KINDS) | frozenset(_OTHER_HEADS) | _CALL_HEADS
    | frozenset({"const", "global", "func-ref", "make-closure", "field-addr",
                 "binop", "phi", "slice-to-array-ptr"})
)


# ═══════════════════════════════════════════════════════════════════
#  PART 3: FUNCTION BODIES
# ═══════════════════════════════════════════════════════════════════

class _BodyLoader:
    """Builds the blocks of one function from its ``block`` forms."""

    def __init__(
        self,
        owner: "_ProgramLoader",
        pkg: Package,
        fn: Function,
        block_forms: List[list],
    ) -> None:
        self.owner = owner
        self.pkg = pkg
        self.fn = fn
        self.block_forms = block_forms
        self.source = owner.source
        self.env: Dict[str, Value] = {}
        self._let_forms: Dict[str, list] = {}
        self._built: Dict[int, List[Instruction]] = {}
        self._building: Set[str] = set()
        self._phis: List[Tuple[ValueInstr, List[Any], list]] = []

    def error(self, message: str, form: Any = None) -> IRLoadError:
        return IRLoadError(f"{self.fn.qualified_name}: {message}", form=form, source=self.source)

    # ----- driver -------------------------------------------------------------

    def load(self) -> None:
        for p in self.fn.params + self.fn.free_vars:
            self.env[p.name] = p

        forms = sorted(self.block_forms, key=self._block_index)
        for i, form in enumerate(forms):
            if self._block_index(form) != i:
                raise self.error(f"block indices must be 0..{len(forms) - 1}", form)
            self.fn.blocks.append(BasicBlock(i))

        bodies: List[Tuple[BasicBlock, List[Any]]] = []
        for block, form in zip(self.fn.blocks, forms):
            stmts = self._block_header(block, form)
            bodies.append((block, stmts))
            for stmt in stmts:
                if _head(stmt) == "let":
                    self._declare(stmt)

        for block, stmts in bodies:
            for stmt in stmts:
                block.instrs.extend(self._statement(stmt))
            last = block.last
            if isinstance(last, If) and len(block.succs) != 2:
                raise self.error(
                    f"block {block.index} ends in if but has {len(block.succs)} successor(s)"
                )

        for instr, operands, form in self._phis:
            instr.operands = tuple(self._operand(x, [], form) for x in operands)

        link_blocks(self.fn)

    def _block_index(self, form: list) -> int:
        if len(form) < 2 or not isinstance(form[1], int):
            raise self.error("block needs an integer index", form)
        return form[1]

    def _block_header(self, block: BasicBlock, form: list) -> List[Any]:
        stmts: List[Any] = []
        for item in form[2:]:
            if isinstance(item, str):
                block.comment = str(item)
            elif _head(item) == "succs":
                for idx in item[1:]:
                    if not isinstance(idx, int) or not 0 <= idx < len(self.fn.blocks):
                        raise self.error(f"unknown successor {idx!r}", form)
                    block.succs.append(self.fn.blocks[idx])
            else:
                stmts.append(item)
        return stmts

    def _declare(self, stmt: list) -> None:
        if len(stmt) < 3 or not isinstance(stmt[1], str):
            raise self.error("let needs a name and an expression", stmt)
        name = stmt[1]
        if name in self.env or name in self._let_forms:
            raise self.error(f"{name} is assigned more than once", stmt)
        self._let_forms[name] = stmt

    # ----- statements ---------------------------------------------------------

    def _statement(self, stmt: Any) -> List[Instruction]:
        key = id(stmt)
        if key in self._built:
            return self._built[key]
        instrs: List[Instruction] = []
        head = _head(stmt)
        items, location = self._split_pos(stmt)

        if head == "let":
            name = items[1]
            if name in self._building:
                raise self.error(f"{name} depends on itself", stmt)
            self._building.add(name)
            try:
                self.env[name] = self._expr(items[2], instrs, name=name, location=location)
            finally:
                self._building.discard(name)
        elif head == "if":
            if len(items) != 2:
                raise self.error("if takes one condition", stmt)
            cond = self._operand(items[1], instrs, stmt)
            instrs.append(If(cond=cond, location=location))
        elif head == "jump":
            instrs.append(Jump(location=location))
        elif head == "return":
            results = tuple(self._operand(x, instrs, stmt) for x in items[1:])
            instrs.append(Return(results=results, location=location))
        elif head == "panic":
            arg = self._operand(items[1], instrs, stmt) if len(items) > 1 else None
            instrs.append(Panic(arg=arg, location=location))
        elif head == "store":
            if len(items) != 3:
                raise self.error("store takes an address and a value", stmt)
            addr = self._operand(items[1], instrs, stmt)
            val = self._operand(items[2], instrs, stmt)
            instrs.append(Store(addr=addr, val=val, location=location))
        elif head in _VALUE_HEADS:
            self._expr(items, instrs, location=location)
        else:
            raise self.error("unknown statement", stmt)

        self._built[key] = instrs
        return instrs

    def _split_pos(self, form: list) -> Tuple[list, SourceLocation]:
        if len(form) > 1 and _head(form[-1]) == "pos":
            return form[:-1], self.owner.location(form[-1])
        return form, NO_LOCATION

    # ----- operands -----------------------------------------------------------

    def _lookup(self, name: str, form: Any) -> Value:
        if name in self.env:
            return self.env[name]
        if name in self._let_forms:
            stmt = self._let_forms[name]
            self._statement(stmt)
            return self.env[name]
        if name == "nil":
            return _nil_const()
        if name in self.pkg.globals:
            return self.pkg.globals[name]
        if name in self.pkg.consts:
            return self.pkg.consts[name]
        raise self.error(f"undefined name {name}", form)

    def _operand(self, x: Any, instrs: List[Instruction], form: Any) -> Value:
        if isinstance(x, bool):
            return Value(ValueKind.CONSTANT, str(x).lower(), literal=str(x).lower())
        if isinstance(x, (int, float)):
            return Value(ValueKind.CONSTANT, str(x), literal=str(x))
        if isinstance(x, StringLiteral):
            return Value(ValueKind.CONSTANT, f"\"{x}\"", literal=str(x))
        if isinstance(x, str):
            return self._lookup(x, form)
        if isinstance(x, list):
            return self._expr(x, instrs)
        raise self.error(f"bad operand {x!r}", form)

    # ----- expressions --------------------------------------------------------

    def _emit(
        self,
        instrs: List[Instruction],
        kind: ValueKind,
        name: str,
        operands: Tuple[Value, ...],
        location: SourceLocation,
        result_len: int = 0,
    ) -> Value:
        inner = operands[0] if kind in WRAPPER_KINDS else None
        v = Value(kind, name, inner=inner, result_len=result_len)
        instrs.append(ValueInstr(value=v, location=location, operands=operands))
        return v

    def _expr(
        self,
        form: Any,
        instrs: List[Instruction],
        name: str = "",
        location: SourceLocation = NO_LOCATION,
    ) -> Value:
        head = _head(form)
        if head is None:
            # a bare operand bound to a name: (let x y)
            return self._operand(form, instrs, form)
        if head not in _VALUE_HEADS:
            raise self.error("unknown expression", form)
        form, pos = self._split_pos(form)
        if pos.is_valid:
            location = pos
        args = form[1:]

        def operands(xs: Iterable[Any]) -> Tuple[Value, ...]:
            return tuple(self._operand(x, instrs, form) for x in xs)

        if head == "const":
            if not args or _is_nil(args[0]):
                return _nil_const(name)
            return Value(ValueKind.CONSTANT, name or str(args[0]), literal=str(args[0]))

        if head == "global":
            self._expect(form, 2)
            return self.owner.global_value(str(args[0]), str(args[1]))

        if head == "func-ref":
            self._expect(form, 2)
            callee = Callee(str(args[0]), str(args[1]))
            return Value(ValueKind.FUNCTION_LITERAL, name or str(callee))

        if head in _SIMPLE_KINDS:
            kind = _SIMPLE_KINDS[head]
            ops = operands(args)
            if kind in WRAPPER_KINDS and not ops:
                raise self.error(f"{head} needs an operand", form)
            return self._emit(instrs, kind, name, ops, location)

        if head == "field-addr":
            self._expect(form, 1, at_least=True)
            return self._emit(instrs, ValueKind.FIELD_ADDRESS, name, operands(args[:1]), location)

        if head == "slice-to-array-ptr":
            self._expect(form, 2)
            if not isinstance(args[1], int) or args[1] < 0:
                raise self.error("array length must be a non-negative integer", form)
            return self._emit(
                instrs, ValueKind.SLICE_TO_FIXED_ARRAY_POINTER, name,
                operands(args[:1]), location, result_len=args[1],
            )

        if head == "make-closure":
            self._expect(form, 2, at_least=True)
            return self._emit(instrs, ValueKind.CLOSURE_CREATION, name, operands(args[2:]), location)

        if head in _OTHER_HEADS:
            idx = _OTHER_HEADS[head]
            self._expect(form, idx, at_least=True)
            return self._emit(instrs, ValueKind.OTHER, name, operands(args[idx - 1:idx]), location)

        if head == "phi":
            instr = ValueInstr(value=Value(ValueKind.OTHER, name), location=location)
            self._phis.append((instr, list(args), form))
            instrs.append(instr)
            return instr.value

        if head == "binop":
            self._expect(form, 3)
            x, y = operands(args[1:3])
            instr = BinOp(
                value=Value(ValueKind.OTHER, name), location=location,
                op=str(args[0]), x=x, y=y,
            )
            instrs.append(instr)
            return instr.value

        # calls
        if head == "call":
            self._expect(form, 2, at_least=True)
            callee: Optional[Callee] = Callee(str(args[0]), str(args[1]))
            call_args = operands(args[2:])
        elif head == "call-method":
            self._expect(form, 4, at_least=True)
            callee = Callee(str(args[0]), str(args[2]), recv=str(args[1]))
            call_args = operands(args[3:])
        else:
            self._expect(form, 1, at_least=True)
            callee = None
            operands(args[:1])
            call_args = operands(args[1:])
        instr = CallInstruction(
            value=Value(ValueKind.OTHER, name), location=location,
            callee=callee, args=call_args,
        )
        instrs.append(instr)
        return instr.value

    def _expect(self, form: list, n: int, at_least: bool = False) -> None:
        got = len(form) - 1
        if got < n or (not at_least and got != n):
            qualifier = "at least " if at_least else ""
            raise self.error(f"{form[0]} takes {qualifier}{n} argument(s)", form)


def _nil_const(name: str = "") -> Value:
    return Value(ValueKind.CONSTANT, name or "nil", is_nil=True, literal="nil")


# ═══════════════════════════════════════════════════════════════════
#  PART 4: PROGRAMS
# ═══════════════════════════════════════════════════════════════════

class _ProgramLoader:
    """Two passes: declare every package member, then load bodies."""

    def __init__(self, program: Program, source: str) -> None:
        self.program = program
        self.source = source
        self._bodies: List[Tuple[Package, Function, List[list]]] = []

    def error(self, message: str, form: Any = None) -> IRLoadError:
        return IRLoadError(message, form=form, source=self.source)

    def location(self, form: list) -> SourceLocation:
        args = form[1:]
        if not 2 <= len(args) <= 3 or not all(isinstance(a, int) for a in args[1:]):
            raise self.error("pos takes FILE LINE [COLUMN]", form)
        return SourceLocation(str(args[0]), *args[1:])

    def global_value(self, pkg_path: str, name: str) -> Value:
        pkg = self.program.add_package(pkg_path)
        if name not in pkg.globals:
            pkg.globals[name] = Value(ValueKind.GLOBAL_VARIABLE, f"{pkg_path}.{name}")
        return pkg.globals[name]

    def load(self, tree: Any) -> Program:
        if _head(tree) != "program":
            raise self.error("expected a (program ...) form")
        for pkg_form in tree[1:]:
            self._package(pkg_form)
        for pkg, fn, block_forms in self._bodies:
            _BodyLoader(self, pkg, fn, block_forms).load()
            logger.debug("Loaded %s: %d block(s)", fn.qualified_name, len(fn.blocks))
        return self.program

    def _package(self, form: Any) -> None:
        if _head(form) != "package" or len(form) < 2:
            raise self.error("expected (package PATH ...)", form)
        path = str(form[1])
        pkg = self.program.add_package(path)
        for member in form[2:]:
            head = _head(member)
            if head == "global" and len(member) == 2:
                self.global_value(path, str(member[1]))
            elif head == "const" and len(member) in (2, 3):
                name = str(member[1])
                if len(member) == 2 or _is_nil(member[2]):
                    pkg.consts[name] = _nil_const(name)
                else:
                    pkg.consts[name] = Value(ValueKind.CONSTANT, name, literal=str(member[2]))
            elif head == "type" and len(member) >= 2:
                tname = str(member[1])
                pkg.types.setdefault(tname, NamedType(tname))
                for m in member[2:]:
                    if _head(m) != "method" or len(m) < 2:
                        raise self.error("expected (method NAME ...)", m)
                    self._function(pkg, str(m[1]), m[2:], recv=tname)
            elif head == "func" and len(member) >= 2:
                self._function(pkg, str(member[1]), member[2:])
            elif head == "method" and len(member) >= 3:
                self._function(pkg, str(member[2]), member[3:], recv=str(member[1]))
            else:
                raise self.error("unknown package member", member)

    def _function(
        self,
        pkg: Package,
        name: str,
        items: List[Any],
        recv: Optional[str] = None,
    ) -> Function:
        fn = Function(pkg.path, name, recv=recv)
        existing = pkg.functions.get(name) if recv is None else (
            pkg.types[recv].methods.get(name) if recv in pkg.types else None
        )
        if existing is not None:
            raise self.error(f"{fn.qualified_name} is declared more than once")

        block_forms: List[list] = []
        for item in items:
            head = _head(item)
            if head == "pos":
                fn.location = self.location(item)
            elif head == "params":
                fn.params.extend(Value(ValueKind.OTHER, str(p)) for p in item[1:])
            elif head == "free-vars":
                fn.free_vars.extend(Value(ValueKind.FREE_VARIABLE, str(p)) for p in item[1:])
            elif head == "block":
                block_forms.append(item)
            else:
                raise self.error(f"{fn.qualified_name}: unknown function item", item)

        pkg.add_function(fn)
        if block_forms:
            self._bodies.append((pkg, fn, block_forms))
        return fn


# ═══════════════════════════════════════════════════════════════════
#  PART 5: PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def loads(
    text: str,
    source: str = "<string>",
    program: Optional[Program] = None,
) -> Program:
    """Load a ``(program ...)`` dump from *text*.

    When *program* is given, the dump's packages are added to it.
    """
    tree = _parse_sexp(text, source)
    return _ProgramLoader(program or Program(), source).load(tree)


def load_file(path: Union[str, Path], program: Optional[Program] = None) -> Program:
    p = Path(path)
    logger.info("Loading IR dump: %s", p)
    return loads(p.read_text(encoding="utf-8"), source=str(p), program=program)


def load_files(paths: Iterable[Union[str, Path]]) -> Program:
    """Load several dumps into one program."""
    program = Program()
    for path in paths:
        load_file(path, program=program)
    return program


__all__ = ["loads", "load_file", "load_files"]
