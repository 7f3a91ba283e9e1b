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
"""LQR over a scenario tree.

Every node of the tree holds a linear-quadratic sub-problem and the
probability that it occurs given its parent. Bellman backups run from the
leaves to the root, using the probability-weighted value of a node's children
as its future value.
"""

import logging
import numpy as np
from .contracts import (PROBABILITY_TOL, PreconditionError, check_shape,
                        is_almost_equal, is_between_inclusive, is_equal,
                        is_greater, is_true)
from .lqr import riccati_gain, riccati_value
from .tree import Tree

logger = logging.getLogger(__name__)


class PlanNode(object):

    """Linear-quadratic sub-problem held at a scenario tree node."""

    def __init__(self,
                 state_size,
                 action_size,
                 A,
                 B,
                 Q,
                 R,
                 probability,
                 dynamics=None,
                 cost=None):
        """Constructs a PlanNode.

        Args:
            state_size: State size.
            action_size: Action size.
            A: State transition matrix [state_size, state_size].
            B: Control matrix [state_size, action_size].
            Q: Quadratic state cost matrix [state_size, state_size].
            R: Quadratic control cost matrix [action_size, action_size].
            probability: Probability of this node given its parent.
            dynamics: Optional dynamics model to re-linearize at the node's
                linearization point.
            cost: Optional cost model to re-quadratize at the node's
                linearization point.
        """
        self.state_size = state_size
        self.action_size = action_size

        self.A = np.array(A, dtype=float)
        self.B = np.array(B, dtype=float)
        self.Q = np.array(Q, dtype=float)
        self.R = np.array(R, dtype=float)
        self.probability = float(probability)

        self.dynamics = dynamics
        self.cost = cost

        self.K = np.zeros((action_size, state_size))
        self.k = np.zeros(action_size)
        self.V = np.zeros((state_size, state_size))

        self.x = np.zeros(state_size)
        self.u = np.zeros(action_size)

        self.check_sizes()

    def set_linearization_point(self, x, u):
        """Moves the point the local models are taken about.

        Args:
            x: State [state_size].
            u: Control [action_size].
        """
        self.x = check_shape(x, (self.state_size,), "x")
        self.u = check_shape(u, (self.action_size,), "u")

    def update_dynamics(self, t=0):
        """Recomputes (A, B) at the current linearization point.

        This is the identity for nodes built from plain matrices.

        Args:
            t: Time step of the node.
        """
        if self.dynamics is None:
            return

        self.A = np.asarray(self.dynamics.f_x(self.x, self.u, t), dtype=float)
        self.B = np.asarray(self.dynamics.f_u(self.x, self.u, t), dtype=float)

    def update_cost(self, t=0):
        """Recomputes (Q, R) at the current linearization point.

        This is the identity for nodes built from plain matrices. The node's
        cost is x^T Q x + u^T R u, so Q and R are half the cost Hessians.

        Args:
            t: Time step of the node.
        """
        if self.cost is None:
            return

        self.Q = 0.5 * np.asarray(self.cost.l_xx(self.x, self.u, t), dtype=float)
        self.R = 0.5 * np.asarray(self.cost.l_uu(self.x, self.u, t), dtype=float)

    def check_sizes(self):
        """Validates the node's matrices against its dimensions."""
        n, m = self.state_size, self.action_size
        check_shape(self.A, (n, n), "A")
        check_shape(self.B, (n, m), "B")
        check_shape(self.Q, (n, n), "Q")
        check_shape(self.R, (m, m), "R")
        check_shape(self.K, (m, n), "K")
        check_shape(self.V, (n, n), "V")
        check_shape(self.x, (n,), "x")
        check_shape(self.u, (m,), "u")
        is_between_inclusive(self.probability, 0.0, 1.0, "probability")

    def __repr__(self):
        return "PlanNode(probability={})".format(self.probability)


class LQRTree(object):

    """LQR over a tree of probability-weighted scenarios."""

    def __init__(self, state_size, action_size, probability_tol=PROBABILITY_TOL):
        """Constructs an LQRTree.

        Args:
            state_size: State size.
            action_size: Action size.
            probability_tol: Tolerance on the sum of sibling probabilities.
        """
        is_greater(state_size, 0, "state size")
        is_greater(action_size, 0, "action size")
        self.state_size = state_size
        self.action_size = action_size
        self.probability_tol = probability_tol

        self._tree = None
        self._zero_value = np.zeros((state_size, state_size))

    @classmethod
    def chain(cls, A, B, Q, R, T):
        """Builds a single-branch tree of horizon T.

        The tree is a chain of T+1 nodes, each with probability 1. The leaf
        only carries the terminal state cost.

        Args:
            A: State transition matrix [state_size, state_size].
            B: Control matrix [state_size, action_size].
            Q: Quadratic state cost matrix [state_size, state_size].
            R: Quadratic control cost matrix [action_size, action_size].
            T: Horizon length.

        Returns:
            LQRTree.
        """
        is_greater(T, 1, "horizon")
        B = np.asarray(B, dtype=float)
        is_equal(B.ndim, 2, "B dimensions")
        lqr_tree = cls(B.shape[0], B.shape[1])

        node = lqr_tree.add_root(A, B, Q, R)
        for _ in range(T):
            plan_node = lqr_tree.make_plan_node(A, B, Q, R, 1.0)
            node, = lqr_tree.add_nodes([plan_node], node)

        return lqr_tree

    @property
    def tree(self):
        """The underlying tree of PlanNodes."""
        self._check_root()
        return self._tree

    @property
    def root(self):
        """The root tree node."""
        return self.tree.root

    def _check_root(self):
        is_true(self._tree is not None, "the tree has no root")

    def make_plan_node(self, A, B, Q, R, probability, dynamics=None, cost=None):
        """Creates a PlanNode with this tree's dimensions.

        Args:
            A: State transition matrix [state_size, state_size].
            B: Control matrix [state_size, action_size].
            Q: Quadratic state cost matrix [state_size, state_size].
            R: Quadratic control cost matrix [action_size, action_size].
            probability: Probability of the node given its parent.
            dynamics: Optional dynamics model.
            cost: Optional cost model.

        Returns:
            PlanNode.
        """
        plan_node = PlanNode(self.state_size, self.action_size, A, B, Q, R,
                             probability, dynamics, cost)

        # Local models at the initial linearization point.
        plan_node.update_dynamics()
        plan_node.update_cost()
        return plan_node

    def add_root(self, A, B=None, Q=None, R=None):
        """Resets the tree to a single root node.

        Args:
            A: State transition matrix, or a PlanNode to use as the root.
            B: Control matrix. Unused if A is a PlanNode.
            Q: Quadratic state cost matrix. Unused if A is a PlanNode.
            R: Quadratic control cost matrix. Unused if A is a PlanNode.

        Returns:
            The root tree node.
        """
        if isinstance(A, PlanNode):
            plan_node = A
            is_equal(plan_node.state_size, self.state_size, "state size")
            is_equal(plan_node.action_size, self.action_size, "action size")
            plan_node.probability = 1.0
        else:
            plan_node = self.make_plan_node(A, B, Q, R, 1.0)

        self._tree = Tree(plan_node)
        return self._tree.root

    def add_nodes(self, plan_nodes, parent):
        """Attaches scenario nodes as the children of a parent.

        Args:
            plan_nodes: PlanNodes whose probabilities sum to 1.
            parent: Parent tree node.

        Returns:
            List of the new tree nodes.
        """
        self._check_root()
        is_greater(len(plan_nodes), 0, "number of children")

        probability_sum = sum(node.probability for node in plan_nodes)
        is_almost_equal(probability_sum, 1.0, self.probability_tol,
                        "children probability sum")

        for plan_node in plan_nodes:
            is_equal(plan_node.state_size, self.state_size, "state size")
            is_equal(plan_node.action_size, self.action_size, "action size")

        return [self._tree.add_child(parent, node) for node in plan_nodes]

    def leaf_nodes(self):
        """Returns the leaf tree nodes."""
        return self.tree.leaf_nodes()

    def forward_pass(self, x0):
        """Rolls the current policy out over every branch of the tree.

        Each node is linearized at the state it is reached with and the
        control its policy applies there. Siblings are visited in no
        particular order.

        Args:
            x0: Initial state [state_size].
        """
        self._check_root()
        x0 = check_shape(x0, (self.state_size,), "x0")

        to_process = [(self._tree.root, x0)]
        while to_process:
            tree_node, x = to_process.pop()
            x_next = self._forward_node(tree_node, x)
            for child in self._tree.children(tree_node):
                to_process.append((child, x_next))

    def _forward_node(self, tree_node, x):
        node = tree_node.item
        u = node.K.dot(x)

        node.set_linearization_point(x, u)
        node.update_dynamics(tree_node.depth)
        node.update_cost(tree_node.depth)

        return node.A.dot(x) + node.B.dot(u)

    def bellman_tree_backup(self):
        """Computes the optimal policy of every node, leaves first."""
        self._check_root()
        self.control_and_value_for_leaves()

        frontier = self._tree.leaf_nodes()
        while not (len(frontier) == 1 and frontier[0].depth == 0):
            frontier = self.backup_to_parents(frontier)

        logger.debug("tree backup done over %d nodes", len(self._tree))

    def control_and_value_for_leaves(self):
        """Solves the leaves with a zero future value.

        All leaves must be at the same depth.
        """
        leaves = self.tree.leaf_nodes()
        depth = leaves[0].depth
        for leaf in leaves:
            is_equal(leaf.depth, depth, "leaf depth")

        for leaf in leaves:
            node = leaf.item
            self.compute_control_policy(node, self._zero_value)
            node.V = self.compute_value_matrix(node, self._zero_value)

    def backup_to_parents(self, children):
        """Backs the children's values up to their parents.

        Args:
            children: Tree nodes, all at the same depth (> 0).

        Returns:
            List of the parents, which form the next frontier.
        """
        is_greater(len(children), 0, "frontier size")
        depth = children[0].depth
        is_greater(depth, 0, "frontier depth")

        parent_map = {}
        for child in children:
            is_equal(child.depth, depth, "frontier depth")
            parent_map.setdefault(child.parent_index, []).append(child)

        parents = []
        for parent_index, siblings in parent_map.items():
            # Probability-weighted future value over the parent's children.
            V_tilde = self._zero_value.copy()
            for child in siblings:
                V_tilde += child.item.probability * child.item.V

            parent = self._tree.node(parent_index)
            node = parent.item
            self.compute_control_policy(node, V_tilde)
            node.V = self.compute_value_matrix(node, V_tilde)
            parents.append(parent)

        return parents

    def compute_control_policy(self, node, V_future):
        """Computes and stores a node's optimal feedback gain.

        K = -(R + B^T V B)^-1 B^T V A

        Args:
            node: PlanNode.
            V_future: Future value matrix [state_size, state_size].

        Returns:
            K [action_size, state_size].
        """
        node.check_sizes()
        check_shape(V_future, (self.state_size, self.state_size), "V_future")

        node.K = riccati_gain(node.A, node.B, node.R, V_future)
        node.k = np.zeros(self.action_size)
        return node.K

    def compute_value_matrix(self, node, V_future):
        """Computes a node's cost-to-go matrix under its current gain.

        V = Q + K^T R K + (A + B K)^T V_future (A + B K)

        Args:
            node: PlanNode.
            V_future: Future value matrix [state_size, state_size].

        Returns:
            V [state_size, state_size].
        """
        return riccati_value(node.A, node.B, node.Q, node.R, node.K, V_future)

    def trajectory(self, leaf):
        """Extracts the scenario ending at a leaf after a forward pass.

        Args:
            leaf: Leaf tree node.

        Returns:
            Tuple of
                xs: States along the root-to-leaf path [depth+1, state_size].
                us: Controls applied at the non-leaf nodes [depth, action_size].
                probability: Probability of the scenario.
        """
        path = self.tree.path(leaf)
        if not path[-1].is_leaf:
            raise PreconditionError("{} is not a leaf".format(leaf))

        xs = np.array([node.item.x for node in path])
        us = np.array([node.item.u for node in path[:-1]]).reshape(
            -1, self.action_size)
        probability = float(np.prod([node.item.probability for node in path]))
        return xs, us, probability

    def expected_cost(self, x0):
        """Expected cost-to-go from x0 under the solved policy.

        Args:
            x0: Initial state [state_size].

        Returns:
            x0^T V_root x0.
        """
        x0 = check_shape(x0, (self.state_size,), "x0")
        return float(x0.dot(self.root.item.V).dot(x0))
