"""Tests for the indexed tree container."""

import pytest

from lqrtrees.contracts import PreconditionError
from lqrtrees.tree import Tree


@pytest.fixture
def tree():
    #        root
    #       /    \
    #      a      b
    #     / \
    #    c   d
    tree = Tree("root")
    a = tree.add_child(tree.root, "a")
    tree.add_child(tree.root, "b")
    tree.add_child(a, "c")
    tree.add_child(a, "d")
    return tree


class TestStructure:

    def test_root(self, tree):
        assert tree.root.item == "root"
        assert tree.root.depth == 0
        assert tree.root.parent_index is None
        assert tree.parent(tree.root) is None

    def test_len_and_iteration_order(self, tree):
        assert len(tree) == 5
        assert [node.item for node in tree] == ["root", "a", "b", "c", "d"]

    def test_children_in_insertion_order(self, tree):
        assert [n.item for n in tree.children(tree.root)] == ["a", "b"]
        a = tree.node(1)
        assert [n.item for n in tree.children(a)] == ["c", "d"]
        assert a.child_indices == (3, 4)

    def test_depth_and_parent(self, tree):
        d = tree.node(4)
        assert d.depth == 2
        assert tree.depth(d) == 2
        assert tree.parent(d).item == "a"
        assert tree.depth(4) == 2

    def test_leaf_nodes(self, tree):
        leaves = tree.leaf_nodes()
        assert sorted(n.item for n in leaves) == ["b", "c", "d"]
        assert all(n.is_leaf for n in leaves)
        assert not tree.root.is_leaf

    def test_path(self, tree):
        path = tree.path(tree.node(3))
        assert [n.item for n in path] == ["root", "a", "c"]
        assert [n.item for n in tree.path(tree.root)] == ["root"]

    def test_single_node_tree_is_its_own_leaf(self):
        tree = Tree(0)
        assert tree.leaf_nodes() == [tree.root]


class TestOwnership:

    def test_foreign_node_rejected(self, tree):
        other = Tree("other")
        foreign = other.add_child(other.root, "x")
        with pytest.raises(PreconditionError):
            tree.add_child(foreign, "y")
        with pytest.raises(PreconditionError):
            tree.children(other.root)

    def test_unknown_index_rejected(self, tree):
        with pytest.raises(PreconditionError):
            tree.node(len(tree))
        with pytest.raises(PreconditionError):
            tree.add_child(-1, "z")

    def test_add_child_by_index(self, tree):
        child = tree.add_child(2, "e")
        assert tree.parent(child).item == "b"
        assert child.depth == 2
