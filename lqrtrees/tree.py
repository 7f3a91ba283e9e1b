# Copyright (C) 2018, Anass Al
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>
"""Rooted tree stored as an arena of indexed nodes."""

from .contracts import PreconditionError


class TreeNode(object):

    """Node of a Tree.

    Nodes refer to their parent and children by index into the owning tree,
    so a node never holds a reference to another node.
    """

    def __init__(self, index, item, parent=None, depth=0):
        """Constructs a TreeNode.

        Args:
            index: Index of this node in its tree.
            item: Value held at this node.
            parent: Index of the parent node. None for the root.
            depth: Depth of this node. 0 for the root.
        """
        self._index = index
        self._parent = parent
        self._children = []
        self._depth = depth
        self.item = item

    @property
    def index(self):
        """Index of this node in its tree."""
        return self._index

    @property
    def parent_index(self):
        """Index of the parent node, None for the root."""
        return self._parent

    @property
    def child_indices(self):
        """Indices of the children, in insertion order."""
        return tuple(self._children)

    @property
    def depth(self):
        """Depth of this node."""
        return self._depth

    @property
    def is_leaf(self):
        """Whether this node has no children."""
        return not self._children

    def __repr__(self):
        return "TreeNode(index={}, depth={}, children={})".format(
            self._index, self._depth, len(self._children))


class Tree(object):

    """Rooted tree holding one item per node."""

    def __init__(self, root_item):
        """Constructs a Tree.

        Args:
            root_item: Item held at the root.
        """
        self._nodes = [TreeNode(0, root_item)]

    @property
    def root(self):
        """The root node."""
        return self._nodes[0]

    def __len__(self):
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    def node(self, index):
        """Returns the node at a given index."""
        if not 0 <= index < len(self._nodes):
            raise PreconditionError("no node with index {}".format(index))
        return self._nodes[index]

    def _owned(self, node):
        if isinstance(node, TreeNode):
            index = node.index
            if 0 <= index < len(self._nodes) and self._nodes[index] is node:
                return node
            raise PreconditionError("{} does not belong to this tree".format(node))
        return self.node(node)

    def add_child(self, parent, item):
        """Attaches a new node holding an item under a parent.

        Args:
            parent: Parent node (or its index). Must belong to this tree.
            item: Item to hold at the new node.

        Returns:
            The new node.
        """
        parent = self._owned(parent)
        child = TreeNode(len(self._nodes), item, parent.index, parent.depth + 1)
        self._nodes.append(child)
        parent._children.append(child.index)
        return child

    def parent(self, node):
        """Returns the parent of a node, None for the root."""
        node = self._owned(node)
        if node.parent_index is None:
            return None
        return self._nodes[node.parent_index]

    def children(self, node):
        """Returns the children of a node, in insertion order."""
        node = self._owned(node)
        return [self._nodes[i] for i in node.child_indices]

    def depth(self, node):
        """Returns the depth of a node."""
        return self._owned(node).depth

    def leaf_nodes(self):
        """Returns all nodes currently without children."""
        return [node for node in self._nodes if node.is_leaf]

    def path(self, node):
        """Returns the nodes from the root down to a node, inclusive."""
        node = self._owned(node)
        path = [node]
        while node.parent_index is not None:
            node = self._nodes[node.parent_index]
            path.append(node)
        return path[::-1]
