# nilnop/dominators.py
"""
Dominator tree computation over a function's basic blocks.

The nilness walker consumes a CFG whose dominator tree is already known.
IR coming from the dump loader or :class:`nilnop.ssa_ir.FunctionBuilder`
only carries successor lists, so :func:`link_blocks` fills in the rest:

- ``BasicBlock.preds``     from the successor lists, reachable blocks only
- ``BasicBlock.idom``      immediate dominator (``None`` for the entry and
                           for blocks unreachable from it)
- ``BasicBlock.dominees``  dominator-tree children, ordered by index

Usage example
-------------
    from nilnop.dominators import DominatorTree, link_blocks

    link_blocks(fn)
    tree = DominatorTree(fn).compute()
    assert tree.dominates(0, 3)
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from nilnop.ssa_ir import BasicBlock, Function


class DominatorTree:
    """
    Dominator tree of a function's CFG, keyed by block index.

    Attributes after .compute():
        idom              : Dict[index, index]  - immediate dominator
                            (the entry maps to itself)
        dom_tree_children : Dict[index, List[index]]
    """

    def __init__(self, fn: Function):
        self.fn = fn
        self._blocks: List[BasicBlock] = list(fn.blocks)
        self.idom: Dict[int, Optional[int]] = {}
        self.dom_tree_children: Dict[int, List[int]] = defaultdict(list)
        self._computed = False

    # ---- public API --------------------------------------------------

    def compute(self) -> "DominatorTree":
        """Compute immediate dominators and the tree."""
        if self._computed:
            return self
        if self._blocks:
            self._compute_idom()
            self._build_dom_tree()
        self._computed = True
        return self

    def reachable(self, index: int) -> bool:
        self.compute()
        return self.idom.get(index) is not None

    def dominates(self, a: int, b: int) -> bool:
        """Return True if block *a* dominates block *b*."""
        self.compute()
        if not self.reachable(b):
            return False
        cur: Optional[int] = b
        while cur is not None:
            if cur == a:
                return True
            parent = self.idom.get(cur)
            cur = None if parent == cur else parent
        return False

    def strictly_dominates(self, a: int, b: int) -> bool:
        return a != b and self.dominates(a, b)

    # ---- internals: Cooper–Harvey–Kennedy iterative algorithm --------

    def _compute_idom(self):
        entry = self._blocks[0].index

        # iterative DFS for RPO
        finish_stack: List[int] = []
        vis: Set[int] = set()
        s: List[Tuple[BasicBlock, int]] = [(self._blocks[0], 0)]
        vis.add(entry)
        while s:
            block, idx = s[-1]
            if idx < len(block.succs):
                s[-1] = (block, idx + 1)
                child = block.succs[idx]
                if child.index not in vis:
                    vis.add(child.index)
                    s.append((child, 0))
            else:
                s.pop()
                finish_stack.append(block.index)

        rpo_order = list(reversed(finish_stack))
        rpo_num: Dict[int, int] = {nid: i for i, nid in enumerate(rpo_order)}

        self.idom = {b.index: None for b in self._blocks}
        self.idom[entry] = entry

        def _intersect(b1: int, b2: int) -> int:
            finger1, finger2 = b1, b2
            while finger1 != finger2:
                while rpo_num[finger1] > rpo_num[finger2]:
                    finger1 = self.idom[finger1]
                while rpo_num[finger2] > rpo_num[finger1]:
                    finger2 = self.idom[finger2]
            return finger1

        changed = True
        while changed:
            changed = False
            for nid in rpo_order:
                if nid == entry:
                    continue
                block = self._blocks[nid]
                preds = [p.index for p in block.preds
                         if p.index in rpo_num and self.idom.get(p.index) is not None]
                if not preds:
                    continue
                new_idom = preds[0]
                for p in preds[1:]:
                    new_idom = _intersect(new_idom, p)
                if self.idom.get(nid) != new_idom:
                    self.idom[nid] = new_idom
                    changed = True

    def _build_dom_tree(self):
        self.dom_tree_children = defaultdict(list)
        for nid, idom_id in sorted(self.idom.items()):
            if idom_id is not None and idom_id != nid:
                self.dom_tree_children[idom_id].append(nid)


def link_blocks(fn: Function) -> DominatorTree:
    """Fill in ``preds``, ``idom`` and ``dominees`` of every block of *fn*.

    Block indices must match positions in ``fn.blocks``.
    """
    for i, b in enumerate(fn.blocks):
        if b.index != i:
            raise ValueError(
                f"{fn.qualified_name}: block at position {i} has index {b.index}"
            )
        b.preds = []
        b.idom = None
        b.dominees = []
    for b in fn.blocks:
        for s in b.succs:
            s.preds.append(b)

    tree = DominatorTree(fn).compute()
    # Edges out of unreachable blocks are never taken.
    for b in fn.blocks:
        b.preds = [p for p in b.preds if tree.reachable(p.index)]
    for nid, idom_id in tree.idom.items():
        if idom_id is None or idom_id == nid:
            continue
        fn.blocks[nid].idom = fn.blocks[idom_id]
    for parent, children in tree.dom_tree_children.items():
        fn.blocks[parent].dominees = [fn.blocks[c] for c in children]
    return tree


__all__ = ["DominatorTree", "link_blocks"]
