# tests/conftest.py
"""
Shared fixtures and IR-building helpers for the nilnop test suite.

``A_PROGRAM`` is an S-expression dump of a small package ``a`` with two
targets, the function ``a.Wrap`` and the method ``a.S.Wrap``.  The
``f*`` functions call ``Wrap`` and the ``g*`` functions call
``s.Wrap`` in the same four situations:

    1. ``err`` passed after ``if err != nil { panic(err) }``  → nil
    2. named result passed before assignment                → nil
       then after ``err = errors.New(...)``                  → ok
    3. literal ``nil`` passed                               → nil
    4. type switch: ``case nil`` passes x                   → nil
                    ``case int`` passes boxed x             → ok
"""

import pytest

from nilnop.diagnostics import SourceLocation
from nilnop.nilness import FactStack
from nilnop.ssa_ir import Callee, FunctionBuilder, Program
from nilnop.ssa_loader import loads
from nilnop.targets import Target, TargetValidator, resolve_targets


A_PROGRAM = r'''
(program
  (package "errors"
    (func New (params text)))
  (package "a"
    (global s)
    (type S
      (method Wrap (pos "b.go" 36 1) (params s x)
        (block 0 (succs) (return))))
    (func doSomething (pos "a.go" 34 1)
      (block 0 (succs) (return (const nil))))
    (func Wrap (pos "a.go" 38 1) (params x)
      (block 0 (succs) (return)))

    (func f1 (pos "a.go" 5 1)
      (block 0 "entry" (succs 1 2)
        (let t0 (call "a" doSomething) (pos "a.go" 6 20))
        (let t1 (binop != t0 (const nil)) (pos "a.go" 7 9))
        (if t1))
      (block 1 "if.then" (succs)
        (let t2 (change-interface t0))
        (panic t2 (pos "a.go" 8 8)))
      (block 2 "if.done" (succs)
        (let t3 (change-interface t0))
        (call "a" Wrap t3 (pos "a.go" 10 6))
        (return)))

    (func f2 (pos "a.go" 13 1)
      (block 0 "entry" (succs)
        (let t0 (change-interface (const nil)))
        (call "a" Wrap t0 (pos "a.go" 14 6))
        (let t1 (call "errors" New (const "hoge")) (pos "a.go" 15 18))
        (let t2 (change-interface t1))
        (call "a" Wrap t2 (pos "a.go" 16 6))
        (return t1)))

    (func f3 (pos "a.go" 20 1)
      (block 0 "entry" (succs)
        (call "a" Wrap (const nil) (pos "a.go" 21 6))
        (return)))

    (func f4 (pos "a.go" 24 1) (params x)
      (block 0 "entry" (succs 1 3)
        (let t0 (binop == x (const nil)) (pos "a.go" 25 9))
        (if t0))
      (block 1 "typeswitch.body" (succs 2)
        (call "a" Wrap x (pos "a.go" 27 7))
        (jump))
      (block 2 "typeswitch.done" (succs)
        (return))
      (block 3 "typeswitch.next" (succs 4 2)
        (let t1 (type-assert x int))
        (let t2 (extract t1 1))
        (if t2))
      (block 4 "typeswitch.body" (succs 2)
        (let t3 (extract t1 0))
        (let t4 (make-interface t3))
        (call "a" Wrap t4 (pos "a.go" 29 7))
        (jump)))

    (func g1 (pos "b.go" 5 1)
      (block 0 "entry" (succs 1 2)
        (let t0 (call "a" doSomething) (pos "b.go" 6 20))
        (let t1 (binop != t0 (const nil)) (pos "b.go" 7 9))
        (if t1))
      (block 1 "if.then" (succs)
        (let t2 (change-interface t0))
        (panic t2 (pos "b.go" 8 8)))
      (block 2 "if.done" (succs)
        (let t3 (load s))
        (let t4 (change-interface t0))
        (call-method "a" S Wrap t3 t4 (pos "b.go" 10 8))
        (return)))

    (func g2 (pos "b.go" 13 1)
      (block 0 "entry" (succs)
        (let t0 (change-interface (const nil)))
        (call-method "a" S Wrap (load s) t0 (pos "b.go" 14 8))
        (let t1 (call "errors" New (const "hoge")) (pos "b.go" 15 18))
        (let t2 (change-interface t1))
        (call-method "a" S Wrap (load s) t2 (pos "b.go" 16 8))
        (return t1)))

    (func g3 (pos "b.go" 20 1)
      (block 0 "entry" (succs)
        (call-method "a" S Wrap (load s) (const nil) (pos "b.go" 21 8))
        (return)))

    (func g4 (pos "b.go" 24 1) (params x)
      (block 0 "entry" (succs 1 3)
        (let t0 (binop == x (const nil)) (pos "b.go" 25 9))
        (if t0))
      (block 1 "typeswitch.body" (succs 2)
        (call-method "a" S Wrap (load s) x (pos "b.go" 27 9))
        (jump))
      (block 2 "typeswitch.done" (succs)
        (return))
      (block 3 "typeswitch.next" (succs 4 2)
        (let t1 (type-assert x int))
        (let t2 (extract t1 1))
        (if t2))
      (block 4 "typeswitch.body" (succs 2)
        (let t3 (extract t1 0))
        (let t4 (make-interface t3))
        (call-method "a" S Wrap (load s) t4 (pos "b.go" 29 9))
        (jump)))))
'''

#: (file, line) of every call in ``A_PROGRAM`` that passes nil.
A_EXPECTED_NIL_CALLS = [
    ("a.go", 10), ("a.go", 14), ("a.go", 21), ("a.go", 27),
    ("b.go", 10), ("b.go", 14), ("b.go", 21), ("b.go", 27),
]

A_TARGETS = [Target("a", "Wrap", 0), Target("a", "S.Wrap", 0)]

WRAP = Callee("a", "Wrap")
S_WRAP = Callee("a", "Wrap", recv="S")


def loc(line, column=1, file="t.go"):
    return SourceLocation(file, line, column)


def new_builder(name="f", package="a"):
    return FunctionBuilder(package, name, location=loc(1))


def wrap_program():
    """A program declaring ``a.Wrap(x)`` and ``a.S.Wrap(x)``."""
    prog = Program()
    pkg = prog.add_package("a")
    fb = FunctionBuilder("a", "Wrap")
    fb.param("x")
    fb.ret(fb.new_block())
    pkg.add_function(fb.finish())
    mb = FunctionBuilder("a", "Wrap", recv="S")
    mb.param("s")
    mb.param("x")
    mb.ret(mb.new_block())
    pkg.add_function(mb.finish())
    pkg.globals["s"] = FunctionBuilder.global_("a.s")
    return prog


def wrap_validator():
    return TargetValidator(resolve_targets(wrap_program(), A_TARGETS))


@pytest.fixture
def a_program():
    return loads(A_PROGRAM, source="a.ssa")


@pytest.fixture
def validator():
    return wrap_validator()


@pytest.fixture
def empty_stack():
    return FactStack.EMPTY


@pytest.fixture
def a_dump(tmp_path):
    path = tmp_path / "a.ssa"
    path.write_text(A_PROGRAM, encoding="utf-8")
    return path
