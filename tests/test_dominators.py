# tests/test_dominators.py
"""
Tests for dominator tree computation and block linking.
"""

import pytest

from nilnop.dominators import DominatorTree, link_blocks
from nilnop.ssa_ir import BasicBlock, Function
from tests.conftest import new_builder


def make_fn(edges, n):
    """Function with *n* empty blocks and the given successor edges."""
    fn = Function("a", "f")
    fn.blocks = [BasicBlock(i) for i in range(n)]
    for src, dst in edges:
        fn.blocks[src].succs.append(fn.blocks[dst])
    return fn


class TestDominatorTree:

    def test_diamond(self):
        #   0
        #  / \
        # 1   2
        #  \ /
        #   3
        fn = make_fn([(0, 1), (0, 2), (1, 3), (2, 3)], 4)
        link_blocks(fn)
        tree = DominatorTree(fn).compute()
        assert tree.idom == {0: 0, 1: 0, 2: 0, 3: 0}
        assert tree.dom_tree_children[0] == [1, 2, 3]

    def test_chain(self):
        fn = make_fn([(0, 1), (1, 2)], 3)
        tree = link_blocks(fn)
        assert tree.idom[2] == 1
        assert tree.dominates(0, 2)
        assert tree.strictly_dominates(1, 2)
        assert not tree.strictly_dominates(2, 2)
        assert tree.dominates(2, 2)

    def test_loop(self):
        # 0 → 1 ⇄ 2, 1 → 3
        fn = make_fn([(0, 1), (1, 2), (2, 1), (1, 3)], 4)
        tree = link_blocks(fn)
        assert tree.idom == {0: 0, 1: 0, 2: 1, 3: 1}

    def test_unreachable_block(self):
        fn = make_fn([(0, 1), (2, 1)], 3)
        tree = link_blocks(fn)
        assert tree.idom[2] is None
        assert not tree.reachable(2)
        assert tree.idom[1] == 0
        assert not tree.dominates(0, 2)

    def test_empty_function(self):
        tree = DominatorTree(Function("a", "f")).compute()
        assert tree.idom == {}


class TestLinkBlocks:

    def test_preds_idom_and_dominees(self):
        fn = make_fn([(0, 1), (0, 2), (1, 3), (2, 3)], 4)
        link_blocks(fn)
        b0, b1, b2, b3 = fn.blocks
        assert b3.preds == [b1, b2]
        assert b1.preds == [b0]
        assert b0.idom is None
        assert b3.idom is b0
        assert b0.dominees == [b1, b2, b3]
        assert b1.dominees == []

    def test_unreachable_predecessors_dropped(self):
        fn = make_fn([(0, 1), (0, 2), (3, 1)], 4)
        link_blocks(fn)
        b0, b1, b2, b3 = fn.blocks
        assert b1.preds == [b0]
        assert b1.idom is b0
        assert b3.idom is None

    def test_relinking_is_idempotent(self):
        fn = make_fn([(0, 1), (1, 2)], 3)
        link_blocks(fn)
        link_blocks(fn)
        assert fn.blocks[1].preds == [fn.blocks[0]]
        assert fn.blocks[0].dominees == [fn.blocks[1]]

    def test_index_mismatch_rejected(self):
        fn = make_fn([], 2)
        fn.blocks.reverse()
        with pytest.raises(ValueError):
            link_blocks(fn)

    def test_builder_finish_links(self):
        fb = new_builder()
        b0, b1 = fb.new_block(), fb.new_block()
        fb.jump(b0, b1)
        fb.ret(b1)
        fn = fb.finish()
        assert b1.preds == [b0]
        assert b1.idom is b0
        assert fn.entry is b0
