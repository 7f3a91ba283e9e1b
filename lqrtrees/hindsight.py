# -*- coding: utf-8 -*-
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
"""Hindsight iLQR.

Optimizes one trajectory per scenario branch while forcing every branch to
apply the same first control. Each branch carries its own dynamics, cost and
probability; branch policies are solved independently for t >= 1 and merged
at t = 0 through probability-weighted sums.
"""

import logging
import warnings
import numpy as np
from .contracts import (PROBABILITY_TOL, check_shape, checked_inv,
                        is_almost_equal, is_between_inclusive,
                        is_between_lower_inclusive, is_equal, is_greater,
                        is_greater_equal, is_true)
from .controller import (BETA, BaseController, check_solve_options,
                         cost_ratio, lq_backup, nominal_controls)
from .cost import quadratize_cost, quadratize_final_cost
from .dynamics import linearize_dynamics

logger = logging.getLogger(__name__)


class HindsightBranch(object):

    """A scenario of the hindsight problem and its trajectory buffers."""

    def __init__(self, dynamics, cost, probability):
        """Constructs a HindsightBranch.

        Args:
            dynamics: Dynamics model of the scenario.
            cost: Cost function of the scenario.
            probability: Probability of the scenario.
        """
        is_between_inclusive(probability, 0.0, 1.0, "branch probability")
        self.dynamics = dynamics
        self.cost = cost
        self.probability = float(probability)

        self.Ks = None
        self.ks = None
        self.xhat = None
        self.uhat = None

    def __repr__(self):
        return "HindsightBranch(probability={})".format(self.probability)


class iLQRHindsightSolver(BaseController):

    """iLQR over probability-weighted branches sharing their first control."""

    def __init__(self, branches, min_alpha=1e-10,
                 probability_tol=PROBABILITY_TOL):
        """Constructs an iLQRHindsightSolver.

        Args:
            branches: HindsightBranches whose probabilities sum to 1.
            min_alpha: Smallest line search step size before the line search
                gives up.
            probability_tol: Tolerance on the sum of branch probabilities.
        """
        self._branches = list(branches)
        is_greater(len(self._branches), 0, "number of branches")
        is_greater(min_alpha, 0, "min_alpha")

        n = self._branches[0].dynamics.state_size
        m = self._branches[0].dynamics.action_size
        for branch in self._branches:
            is_equal(branch.dynamics.state_size, n, "branch state size")
            is_equal(branch.dynamics.action_size, m, "branch action size")

        self.state_size = n
        self.action_size = m
        self.probability_tol = probability_tol
        self._min_alpha = min_alpha

        self._K0 = np.zeros((m, n))
        self._k0 = np.zeros(m)
        self._xhat0 = np.zeros(n)
        self._uhat0 = np.zeros(m)

        self._check_probabilities()

        super(iLQRHindsightSolver, self).__init__()

    @property
    def branches(self):
        """The branches, in order."""
        return tuple(self._branches)

    @property
    def K0(self):
        """Shared first feedback gain [action_size, state_size]."""
        return self._K0

    @property
    def k0(self):
        """Shared first feedforward term [action_size]."""
        return self._k0

    @property
    def xhat0(self):
        """Shared nominal first state [state_size]."""
        return self._xhat0

    @property
    def uhat0(self):
        """Shared nominal first control [action_size]."""
        return self._uhat0

    def set_branch_probability(self, branch_num, probability):
        """Changes the probability of a branch.

        The probabilities are only required to sum to 1 at the next solve.

        Args:
            branch_num: Branch index.
            probability: New probability in [0, 1].
        """
        is_between_lower_inclusive(branch_num, 0, len(self._branches),
                                   "branch index")
        is_between_inclusive(probability, 0.0, 1.0, "branch probability")
        self._branches[branch_num].probability = float(probability)

    def total_branch_probability(self):
        """Sum of the branch probabilities."""
        return sum(branch.probability for branch in self._branches)

    def _check_probabilities(self):
        is_almost_equal(self.total_branch_probability(), 1.0,
                        self.probability_tol, "branch probability sum")

    def _branch(self, branch_num):
        is_between_lower_inclusive(branch_num, 0, len(self._branches),
                                   "branch index")
        return self._branches[branch_num]

    def timesteps(self):
        """Horizon length of the current nominal trajectories."""
        branch = self._branches[0]
        is_true(branch.uhat is not None, "the solver holds no trajectory")
        T = len(branch.uhat)
        for branch in self._branches:
            is_equal(len(branch.uhat), T, "number of nominal controls")
            is_equal(len(branch.ks), T, "number of feedforward terms")
            is_equal(len(branch.Ks), T, "number of feedback gains")
            is_equal(len(branch.xhat), T + 1, "number of nominal states")
        return T

    def compute_first_control(self, x0):
        """Computes the shared first control at x0.

        Args:
            x0: Initial state [state_size].

        Returns:
            Control [action_size].
        """
        return self._K0.dot(x0 - self._xhat0) + self._k0 + self._uhat0

    def compute_control_stepsize(self, branch_num, x, t, alpha=1.0):
        """Computes a branch's control at time step t at state x.

        Args:
            branch_num: Branch index.
            x: State [state_size].
            t: Time step.
            alpha: Line search coefficient scaling the feedforward term.

        Returns:
            Control [action_size].
        """
        branch = self._branch(branch_num)
        z = x - branch.xhat[t]
        return branch.Ks[t].dot(z) + alpha * branch.ks[t] + branch.uhat[t]

    def forward_pass(self, branch_num, x0, alpha=1.0):
        """Simulates a branch's policy over the full horizon.

        Args:
            branch_num: Branch index.
            x0: Initial state [state_size].
            alpha: Line search coefficient.

        Returns:
            Tuple of
                xs: State path [T+1, state_size].
                us: Control path [T, action_size].
                J: Total cost of the branch including the final cost.
        """
        branch = self._branch(branch_num)
        T = self.timesteps()
        xs = np.zeros((T + 1, self.state_size))
        us = np.zeros((T, self.action_size))
        xs[0] = x0

        J = 0.0
        for t in range(T):
            us[t] = self.compute_control_stepsize(branch_num, xs[t], t, alpha)
            J += branch.cost.l(xs[t], us[t], t)
            xs[t + 1] = branch.dynamics.f(xs[t], us[t], t)

        J += branch.cost.l(xs[T], None, T, terminal=True)
        return xs, us, J

    def expected_cost(self, x0, alpha=1.0):
        """Probability-weighted cost of the branch forward passes.

        Args:
            x0: Initial state [state_size].
            alpha: Line search coefficient.

        Returns:
            Expected total cost.
        """
        J = 0.0
        for branch_num, branch in enumerate(self._branches):
            J += branch.probability * self.forward_pass(branch_num, x0,
                                                        alpha)[2]
        return J

    def solve(self,
              T,
              x_init,
              u_nominal,
              mu=0.0,
              max_iters=100,
              convg_ratio=1e-4,
              start_alpha=1.0,
              warm_start=False,
              t_offset=0,
              on_iteration=None):
        """Computes the optimal branch policies.

        Args:
            T: Horizon length.
            x_init: Initial state [state_size].
            u_nominal: Nominal control [action_size] or control path
                [T, action_size]. Only its first control is used on a warm
                start.
            mu: Levenberg-Marquardt damping. Default: 0.
            max_iters: Maximum number of iterations. Default: 100.
            convg_ratio: Relative change of the expected cost below which the
                solver has converged. Default: 1e-4.
            start_alpha: Initial line search step size. Default: 1.
            warm_start: Reuse the previous trajectories and gains, dropping
                their first t_offset steps. Default: False.
            t_offset: Number of steps to drop on a warm start. Default: 0.
            on_iteration: Callback at the end of each iteration with the
                following signature:
                (iteration_count, xs, us, J_opt, alpha, converged) -> None
                where xs and us are the paths of every branch
                [branches, T+1, state_size] and [branches, T, action_size].
                Default: None.

        Returns:
            Expected cost of the optimal branch paths.
        """
        check_solve_options(T, mu, max_iters, convg_ratio, start_alpha,
                            t_offset)
        is_greater_equal(start_alpha, self._min_alpha, "start_alpha")
        self._check_probabilities()
        n = self.state_size
        m = self.action_size
        x_init = check_shape(x_init, (n,), "x_init")
        us_nominal = nominal_controls(u_nominal, T, m)

        if not warm_start:
            self._xhat0 = np.zeros(n)
            self._uhat0 = us_nominal[0].copy()
            self._K0 = np.zeros((m, n))
            self._k0 = np.zeros(m)
            for branch in self._branches:
                branch.Ks = np.zeros((T, m, n))
                branch.ks = np.zeros((T, m))
                branch.uhat = us_nominal.copy()
                branch.xhat = np.zeros((T + 1, n))
        else:
            self._xhat0 = x_init.copy()
            self._uhat0 = us_nominal[0].copy()
            self._K0 = np.zeros((m, n))
            self._k0 = np.zeros(m)
            for branch in self._branches:
                is_true(branch.Ks is not None, "nothing to warm start from")
            is_equal(self.timesteps() - t_offset, T, "warm started horizon")

            for branch in self._branches:
                branch.Ks = branch.Ks[t_offset:]
                branch.ks = branch.ks[t_offset:]
                branch.uhat = branch.uhat[t_offset:]
                branch.xhat = branch.xhat[t_offset:]

                self._K0 += branch.probability * branch.Ks[0]
                self._k0 += branch.probability * branch.ks[0]

        for branch in self._branches:
            branch.Ks[0] = self._K0
            branch.ks[0] = self._k0
            branch.xhat[0] = self._xhat0
            branch.uhat[0] = self._uhat0

        old_cost = np.inf
        new_cost = np.inf
        converged = False
        for iteration in range(max_iters):
            alpha = start_alpha
            accepted = True
            while True:
                new_cost = self.expected_cost(x_init, alpha)
                ratio = cost_ratio(old_cost, new_cost)
                alpha *= BETA
                if new_cost < old_cost or ratio < convg_ratio:
                    break
                if alpha < self._min_alpha:
                    accepted = False
                    break

            if not accepted:
                warnings.warn("line search failed to decrease the cost",
                              RuntimeWarning)
                if iteration == 0:
                    # Nothing was accepted yet, keep the nominal rollouts.
                    new_cost = self._accept_rollouts(x_init, 0.0)
                else:
                    new_cost = old_cost
                break

            # Undo the last reduction to get the accepted step size.
            alpha /= BETA

            self._accept_rollouts(x_init, alpha)

            converged = ratio < convg_ratio
            logger.debug("[iter %d] alpha: %g, cost ratio: %g, new cost: %g, "
                         "old cost: %g", iteration, alpha, ratio, new_cost,
                         old_cost)
            if on_iteration:
                on_iteration(iteration,
                             np.array([branch.xhat for branch in self._branches]),
                             np.array([branch.uhat for branch in self._branches]),
                             new_cost, alpha, converged)

            if converged:
                break

            old_cost = new_cost
            self._backward_pass(mu)

        if converged:
            logger.info("hindsight iLQR converged after %d iterations",
                        iteration + 1)
        elif accepted:
            warnings.warn("exceeded max iterations without converging",
                          RuntimeWarning)

        return new_cost

    def _accept_rollouts(self, x_init, alpha):
        """Re-runs every branch at alpha and stores the paths as nominal.

        Args:
            x_init: Initial state [state_size].
            alpha: Line search coefficient.

        Returns:
            Expected cost of the new nominal paths.
        """
        paths = [
            self.forward_pass(branch_num, x_init, alpha)
            for branch_num in range(len(self._branches))
        ]

        J = 0.0
        for branch, (xs, us, J_branch) in zip(self._branches, paths):
            branch.xhat = xs
            branch.uhat = us
            J += branch.probability * J_branch

        self._xhat0 = self._branches[0].xhat[0].copy()
        self._uhat0 = self._branches[0].uhat[0].copy()
        return J

    def _backward_pass(self, mu):
        """Recomputes every branch gain, then merges the first step.

        Args:
            mu: Levenberg-Marquardt damping.
        """
        T = self.timesteps()
        n = self.state_size
        m = self.action_size
        LM = mu * np.eye(n)

        weighted_R = np.zeros((m, m))
        weighted_P = np.zeros((n, m))
        weighted_g_u = np.zeros(m)
        weighted_inv_term = np.zeros((m, m))
        weighted_Kt_term = np.zeros((m, n))
        weighted_kt_term = np.zeros(m)

        for branch_num, branch in enumerate(self._branches):
            V, G = quadratize_final_cost(branch.cost, branch.xhat[T], T, n)
            for t in range(T - 1, 0, -1):
                V, G = self.bellman_backup(branch_num, t, mu, V, G)

            A, B = linearize_dynamics(branch.dynamics, self._xhat0,
                                      self._uhat0, 0)
            _, R, P, _, g_u = quadratize_cost(branch.cost, self._xhat0,
                                              self._uhat0, 0, n, m)

            p = branch.probability
            V_reg = V + LM
            weighted_R += p * R
            weighted_P += p * P
            weighted_g_u += p * g_u
            weighted_inv_term += p * B.T.dot(V_reg).dot(B)
            weighted_Kt_term += p * B.T.dot(V_reg).dot(A)
            weighted_kt_term += p * B.T.dot(G)

        inv_term = -checked_inv(weighted_R + weighted_inv_term,
                                "weighted R + B^T (V + mu I) B")
        self._K0 = inv_term.dot(weighted_P.T + weighted_Kt_term)
        self._k0 = inv_term.dot(weighted_g_u + weighted_kt_term)

        for branch in self._branches:
            branch.Ks[0] = self._K0
            branch.ks[0] = self._k0
            is_true(np.array_equal(branch.xhat[0], self._xhat0),
                    "branches disagree on the first state")
            is_true(np.array_equal(branch.uhat[0], self._uhat0),
                    "branches disagree on the first control")

    def bellman_backup(self, branch_num, t, mu, V, G):
        """Backs a branch's value function up through time step t.

        Stores the branch's gains at t.

        Args:
            branch_num: Branch index.
            t: Time step.
            mu: Levenberg-Marquardt damping.
            V: Value Hessian at t+1 [state_size, state_size].
            G: Value gradient at t+1 [state_size].

        Returns:
            Tuple of
                V_t: Value Hessian at t [state_size, state_size].
                G_t: Value gradient at t [state_size].
        """
        branch = self._branch(branch_num)
        x = branch.xhat[t]
        u = branch.uhat[t]

        A, B = linearize_dynamics(branch.dynamics, x, u, t)
        Q, R, P, g_x, g_u = quadratize_cost(branch.cost, x, u, t,
                                            self.state_size, self.action_size)

        V_t, G_t, branch.Ks[t], branch.ks[t] = lq_backup(
            A, B, Q, R, P, g_x, g_u, V, G, mu)
        return V_t, G_t
