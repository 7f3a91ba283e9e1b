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
"""Controllers."""

import abc
import logging
import warnings
import numpy as np
from .contracts import (check_shape, checked_inv, is_equal, is_greater,
                        is_greater_equal, is_true)
from .cost import quadratize_cost, quadratize_final_cost
from .dynamics import linearize_dynamics

logger = logging.getLogger(__name__)

# Step-size adaptation factor of the backtracking line search.
BETA = 0.5


class BaseController(metaclass=abc.ABCMeta):

    """Base trajectory optimizer controller."""

    @abc.abstractmethod
    def solve(self, T, x_init, u_nominal, *args, **kwargs):
        """Computes the optimal controls.

        Args:
            T: Horizon length.
            x_init: Initial state [state_size].
            u_nominal: Nominal control [action_size] or control path
                [T, action_size] to start from.
            *args, **kwargs: Additional positional and key-word arguments.
        """
        raise NotImplementedError


def cost_ratio(old_cost, new_cost):
    """Relative change between two trajectory costs.

    Args:
        old_cost: Previous cost.
        new_cost: New cost.

    Returns:
        |old_cost - new_cost| / |new_cost|, NaN if new_cost is not finite.
    """
    if not np.isfinite(new_cost):
        return np.nan
    if old_cost == new_cost:
        return 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.abs((old_cost - new_cost) / np.float64(new_cost)))


def lq_backup(A, B, Q, R, P, g_x, g_u, V, G, mu):
    """One Bellman backup of a quadratic value function through a
    linear-quadratic step.

    The step cost is 1/2 [x; u]^T [[Q, P], [P^T, R]] [x; u] + g_x^T x + g_u^T u
    around the nominal point and the next value function is
    1/2 x^T V x + G^T x.

    Args:
        A: df/dx [state_size, state_size].
        B: df/du [state_size, action_size].
        Q: d^2l/dx^2 [state_size, state_size].
        R: d^2l/du^2 [action_size, action_size].
        P: d^2l/dxdu [state_size, action_size].
        g_x: dl/dx [state_size].
        g_u: dl/du [action_size].
        V: Next value Hessian [state_size, state_size].
        G: Next value gradient [state_size].
        mu: Levenberg-Marquardt damping added to V before inversion.

    Returns:
        Tuple of
            V_t: Value Hessian [state_size, state_size].
            G_t: Value gradient [state_size].
            K_t: Feedback gain [action_size, state_size].
            k_t: Feedforward term [action_size].
    """
    V_reg = V + mu * np.eye(V.shape[0])

    inv_term = -checked_inv(R + B.T.dot(V_reg).dot(B), "R + B^T (V + mu I) B")
    K = inv_term.dot(P.T + B.T.dot(V_reg).dot(A))
    k = inv_term.dot(g_u + B.T.dot(G))

    closed_loop = A + B.dot(K)
    V_t = Q + P.dot(K) + K.T.dot(P.T) + K.T.dot(R).dot(K)
    V_t += closed_loop.T.dot(V).dot(closed_loop)
    V_t = 0.5 * (V_t + V_t.T)  # To maintain symmetry.

    G_t = g_x + K.T.dot(g_u) + P.dot(k) + K.T.dot(R.T).dot(k)
    G_t += closed_loop.T.dot(V.T.dot(B).dot(k) + G)

    return V_t, G_t, K, k


def nominal_controls(u_nominal, T, action_size):
    """Expands a nominal control into a nominal control path.

    Args:
        u_nominal: Control [action_size] or control path [T, action_size].
        T: Horizon length.
        action_size: Action size.

    Returns:
        Control path [T, action_size].
    """
    u_nominal = np.asarray(u_nominal, dtype=float)
    if u_nominal.ndim == 1:
        check_shape(u_nominal, (action_size,), "u_nominal")
        return np.tile(u_nominal, (T, 1))
    return check_shape(u_nominal, (T, action_size), "u_nominal").copy()


def check_solve_options(T, mu, max_iters, convg_ratio, start_alpha, t_offset):
    """Validates the options shared by the iterative solvers."""
    is_greater(T, 1, "horizon")
    is_greater_equal(mu, 0, "mu")
    is_greater(max_iters, 0, "max_iters")
    is_greater(convg_ratio, 0, "convg_ratio")
    is_greater(start_alpha, 0, "start_alpha")
    is_greater_equal(t_offset, 0, "t_offset")


class iLQRSolver(BaseController):

    """Finite Horizon Iterative Linear Quadratic Regulator."""

    def __init__(self, dynamics, cost, min_alpha=1e-10):
        """Constructs an iLQR solver.

        Args:
            dynamics: Plant dynamics.
            cost: Cost function.
            min_alpha: Smallest line search step size before the line search
                gives up.
        """
        is_greater(min_alpha, 0, "min_alpha")
        self.dynamics = dynamics
        self.cost = cost
        self._min_alpha = min_alpha

        self._Ks = None
        self._ks = None
        self._xhat = None
        self._uhat = None

        super(iLQRSolver, self).__init__()

    @property
    def Ks(self):
        """Feedback gains [T, action_size, state_size]."""
        return self._Ks

    @property
    def ks(self):
        """Feedforward terms [T, action_size]."""
        return self._ks

    @property
    def xhat(self):
        """Nominal state path [T+1, state_size]."""
        return self._xhat

    @property
    def uhat(self):
        """Nominal control path [T, action_size]."""
        return self._uhat

    def timesteps(self):
        """Horizon length of the current nominal trajectory."""
        is_true(self._uhat is not None, "the solver holds no trajectory")
        T = len(self._uhat)
        is_equal(len(self._ks), T, "number of feedforward terms")
        is_equal(len(self._Ks), T, "number of feedback gains")
        is_equal(len(self._xhat), T + 1, "number of nominal states")
        return T

    def set_nominal(self, xs, us, Ks=None, ks=None):
        """Seeds the nominal trajectory and gains for a warm start.

        Args:
            xs: Nominal state path [T+1, state_size].
            us: Nominal control path [T, action_size].
            Ks: Feedback gains [T, action_size, state_size]. Default: zeros.
            ks: Feedforward terms [T, action_size]. Default: zeros.
        """
        n = self.dynamics.state_size
        m = self.dynamics.action_size
        us = np.asarray(us, dtype=float)
        T = us.shape[0]

        self._uhat = check_shape(us, (T, m), "us").copy()
        self._xhat = check_shape(xs, (T + 1, n), "xs").copy()
        if Ks is None:
            self._Ks = np.zeros((T, m, n))
        else:
            self._Ks = check_shape(Ks, (T, m, n), "Ks").copy()
        if ks is None:
            self._ks = np.zeros((T, m))
        else:
            self._ks = check_shape(ks, (T, m), "ks").copy()

    def compute_control_stepsize(self, x, t, alpha=1.0):
        """Computes the control at time step t at state x.

        Args:
            x: State [state_size].
            t: Time step.
            alpha: Line search coefficient scaling the feedforward term.
                Setting it to 1 gives the regular policy.

        Returns:
            Control [action_size].
        """
        z = x - self._xhat[t]
        return self._Ks[t].dot(z) + alpha * self._ks[t] + self._uhat[t]

    def forward_pass(self, x0, alpha=1.0):
        """Simulates the current policy over the full horizon.

        Args:
            x0: Initial state [state_size].
            alpha: Line search coefficient.

        Returns:
            Tuple of
                xs: State path [T+1, state_size].
                us: Control path [T, action_size].
                J: Total cost including the final cost.
        """
        T = self.timesteps()
        xs = np.zeros((T + 1, self.dynamics.state_size))
        us = np.zeros((T, self.dynamics.action_size))
        xs[0] = x0

        J = 0.0
        for t in range(T):
            us[t] = self.compute_control_stepsize(xs[t], t, alpha)
            J += self.cost.l(xs[t], us[t], t)
            xs[t + 1] = self.dynamics.f(xs[t], us[t], t)

        J += self.cost.l(xs[T], None, T, terminal=True)
        return xs, us, J

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
        """Computes the optimal controls.

        Args:
            T: Horizon length.
            x_init: Initial state [state_size].
            u_nominal: Nominal control [action_size] or control path
                [T, action_size]. Only used on a cold start.
            mu: Levenberg-Marquardt damping. Default: 0.
            max_iters: Maximum number of iterations. Default: 100.
            convg_ratio: Relative cost change below which the solver has
                converged. Default: 1e-4.
            start_alpha: Initial line search step size. Default: 1.
            warm_start: Reuse the previous trajectory and gains, dropping
                their first t_offset steps. Default: False.
            t_offset: Number of steps to drop on a warm start. Default: 0.
            on_iteration: Callback at the end of each iteration with the
                following signature:
                (iteration_count, xs, us, J_opt, alpha, converged) -> None
                Default: None.

        Returns:
            Tuple of
                xs: optimal state path [T+1, state_size].
                us: optimal control path [T, action_size].
                J: cost of the optimal path.
        """
        check_solve_options(T, mu, max_iters, convg_ratio, start_alpha,
                            t_offset)
        is_greater_equal(start_alpha, self._min_alpha, "start_alpha")
        n = self.dynamics.state_size
        m = self.dynamics.action_size
        x_init = check_shape(x_init, (n,), "x_init")

        if not warm_start:
            self._Ks = np.zeros((T, m, n))
            self._ks = np.zeros((T, m))
            self._uhat = nominal_controls(u_nominal, T, m)
            self._xhat = np.zeros((T + 1, n))
        else:
            is_true(self._Ks is not None, "nothing to warm start from")
            is_equal(self.timesteps() - t_offset, T, "warm started horizon")

            self._Ks = self._Ks[t_offset:]
            self._ks = self._ks[t_offset:]
            self._uhat = self._uhat[t_offset:]
            self._xhat = self._xhat[t_offset:]

        old_cost = np.inf
        new_cost = np.inf
        converged = False
        for iteration in range(max_iters):
            # Backtracking line search, see
            # http://homes.cs.washington.edu/~todorov/papers/TassaIROS12.pdf
            alpha = start_alpha
            accepted = True
            while True:
                xs_new, us_new, new_cost = self.forward_pass(x_init, alpha)
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
                    # Nothing was accepted yet, keep the nominal rollout.
                    self._xhat, self._uhat, new_cost = self.forward_pass(
                        x_init, 0.0)
                else:
                    new_cost = old_cost
                break

            # Undo the last reduction to get the accepted step size.
            alpha /= BETA

            self._xhat = xs_new
            self._uhat = us_new

            converged = ratio < convg_ratio
            logger.debug("[iter %d] alpha: %g, cost ratio: %g, new cost: %g, "
                         "old cost: %g", iteration, alpha, ratio, new_cost,
                         old_cost)
            if on_iteration:
                on_iteration(iteration, xs_new, us_new, new_cost, alpha,
                             converged)

            if converged:
                break

            old_cost = new_cost
            self._backward_pass(mu)

        if converged:
            logger.info("iLQR converged after %d iterations", iteration + 1)
        elif accepted:
            warnings.warn("exceeded max iterations without converging",
                          RuntimeWarning)

        return self._xhat.copy(), self._uhat.copy(), new_cost

    def _backward_pass(self, mu):
        """Recomputes every gain about the current nominal trajectory.

        Args:
            mu: Levenberg-Marquardt damping.
        """
        T = self.timesteps()
        V, G = quadratize_final_cost(self.cost, self._xhat[T], T,
                                     self.dynamics.state_size)

        for t in range(T - 1, -1, -1):
            V, G, self._Ks[t], self._ks[t] = self.bellman_backup(t, mu, V, G)

    def bellman_backup(self, t, mu, V, G):
        """Backs the value function up through time step t.

        Args:
            t: Time step.
            mu: Levenberg-Marquardt damping.
            V: Value Hessian at t+1 [state_size, state_size].
            G: Value gradient at t+1 [state_size].

        Returns:
            Tuple of
                V_t: Value Hessian at t [state_size, state_size].
                G_t: Value gradient at t [state_size].
                K_t: Feedback gain [action_size, state_size].
                k_t: Feedforward term [action_size].
        """
        n = self.dynamics.state_size
        m = self.dynamics.action_size
        x = self._xhat[t]
        u = self._uhat[t]

        A, B = linearize_dynamics(self.dynamics, x, u, t)
        Q, R, P, g_x, g_u = quadratize_cost(self.cost, x, u, t, n, m)

        return lq_backup(A, B, Q, R, P, g_x, g_u, V, G, mu)


class RecedingHorizonController(object):

    """Receding horizon controller.

    The horizon shrinks by the number of applied steps at every re-solve, so
    the previous solution can warm start the next one.
    """

    def __init__(self, x0, solver):
        """Constructs a RecedingHorizonController.

        Args:
            x0: Initial state [state_size].
            solver: iLQRSolver to solve with.
        """
        self._x = np.asarray(x0, dtype=float)
        self._solver = solver

    def set_state(self, x):
        """Sets the current state of the controller.

        Args:
            x: Current state [state_size].
        """
        self._x = np.asarray(x, dtype=float)

    def control(self, T, u_nominal, step_size=1, **kwargs):
        """Yields the controls to run at every step of a receding horizon
        problem.

        Note: This will automatically move the current controller's state to
        what the dynamics model believes will be the next state after applying
        the controls. Should you want to correct this state between
        iterations, simply use the `set_state()` method.

        Args:
            T: Initial horizon length.
            u_nominal: Nominal control [action_size] or control path
                [T, action_size] for the first solve.
            step_size: Number of steps between each solve. Default: 1.
            **kwargs: Additional key-word arguments to pass to
                `solver.solve()`.

        Yields:
            Tuple of
                xs: applied state path [steps+1, state_size].
                us: applied control path [steps, action_size].
        """
        is_greater(step_size, 0, "step_size")
        dynamics = self._solver.dynamics

        horizon = T
        warm_start = False
        t_offset = 0
        while True:
            self._solver.solve(horizon,
                               self._x,
                               u_nominal,
                               warm_start=warm_start,
                               t_offset=t_offset,
                               **kwargs)

            # The last chunk runs to the end when no solvable horizon is left.
            steps = step_size if horizon - step_size > 1 else horizon

            xs = np.zeros((steps + 1, dynamics.state_size))
            us = np.zeros((steps, dynamics.action_size))
            xs[0] = self._x
            for t in range(steps):
                us[t] = self._solver.compute_control_stepsize(xs[t], t)
                xs[t + 1] = dynamics.f(xs[t], us[t], t)

            self._x = xs[-1]
            yield xs, us

            if steps == horizon:
                return

            horizon -= steps
            warm_start = True
            t_offset = steps
