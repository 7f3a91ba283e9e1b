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
"""Instantaneous Cost Function."""

import abc
import numpy as np
from scipy.optimize import approx_fprime
from .autodiff import as_function, gradient, hessian
from .contracts import check_shape, is_equal


class Cost(metaclass=abc.ABCMeta):

    """Instantaneous Cost.

    NOTE: The terminal cost needs to at most be a function of x and i, whereas
          the non-terminal cost can be a function of x, u and i.
    """

    @abc.abstractmethod
    def l(self, x, u, i, terminal=False):
        """Instantaneous cost function.

        Args:
            x: Current state [state_size].
            u: Current control [action_size]. None if terminal.
            i: Current time step.
            terminal: Compute terminal cost. Default: False.

        Returns:
            Instantaneous cost (scalar).
        """
        raise NotImplementedError

    @abc.abstractmethod
    def l_x(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to x.

        Returns:
            dl/dx [state_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def l_u(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to u.

        Returns:
            dl/du [action_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def l_xx(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to x.

        Returns:
            d^2l/dx^2 [state_size, state_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def l_ux(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u and x.

        Returns:
            d^2l/dudx [action_size, state_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def l_uu(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u.

        Returns:
            d^2l/du^2 [action_size, action_size].
        """
        raise NotImplementedError


class AutoDiffCost(Cost):

    """Auto-differentiated Instantaneous Cost.

    NOTE: The terminal cost needs to at most be a function of x and i, whereas
          the non-terminal cost can be a function of x, u and i.

    NOTE: Enable `jax.config.update("jax_enable_x64", True)` first, otherwise
          the cost and its derivatives are only single precision.
    """

    def __init__(self, l, l_terminal, state_size, action_size, **kwargs):
        """Constructs an AutoDiffCost.

        Args:
            l: JAX-traceable instantaneous cost with signature
                (x, u, i) -> scalar.
            l_terminal: JAX-traceable terminal cost with signature
                (x, i) -> scalar.
            state_size: State size.
            action_size: Action size.
            **kwargs: Additional keyword-arguments to pass to `jax.jit()`.
        """
        self._state_size = state_size
        self._action_size = action_size

        self._l = as_function(l, **kwargs)
        self._l_x = as_function(gradient(l, 0), **kwargs)
        self._l_u = as_function(gradient(l, 1), **kwargs)
        self._l_xx = as_function(hessian(l, 0), **kwargs)
        self._l_ux = as_function(hessian(l, 1, 0), **kwargs)
        self._l_uu = as_function(hessian(l, 1), **kwargs)

        # Terminal cost only depends on x, so we only need to evaluate the x
        # partial derivatives.
        self._l_terminal = as_function(l_terminal, **kwargs)
        self._l_x_terminal = as_function(gradient(l_terminal, 0), **kwargs)
        self._l_xx_terminal = as_function(hessian(l_terminal, 0), **kwargs)

        super(AutoDiffCost, self).__init__()

    def l(self, x, u, i, terminal=False):
        """Instantaneous cost function.

        Args:
            x: Current state [state_size].
            u: Current control [action_size]. None if terminal.
            i: Current time step.
            terminal: Compute terminal cost. Default: False.

        Returns:
            Instantaneous cost (scalar).
        """
        if terminal:
            return float(self._l_terminal(x, i))

        return float(self._l(x, u, i))

    def l_x(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to x.

        Returns:
            dl/dx [state_size].
        """
        if terminal:
            return self._l_x_terminal(x, i)

        return self._l_x(x, u, i)

    def l_u(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to u.

        Returns:
            dl/du [action_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros(self._action_size)

        return self._l_u(x, u, i)

    def l_xx(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to x.

        Returns:
            d^2l/dx^2 [state_size, state_size].
        """
        if terminal:
            return self._l_xx_terminal(x, i)

        return self._l_xx(x, u, i)

    def l_ux(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u and x.

        Returns:
            d^2l/dudx [action_size, state_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros((self._action_size, self._state_size))

        return self._l_ux(x, u, i)

    def l_uu(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u.

        Returns:
            d^2l/du^2 [action_size, action_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros((self._action_size, self._action_size))

        return self._l_uu(x, u, i)


class FiniteDiffCost(Cost):

    """Finite difference approximated Instantaneous Cost.

    NOTE: The terminal cost needs to at most be a function of x and i, whereas
          the non-terminal cost can be a function of x, u and i.
    """

    def __init__(self,
                 l,
                 l_terminal,
                 state_size,
                 action_size,
                 x_eps=None,
                 u_eps=None):
        """Constructs an FiniteDiffCost.

        Args:
            l: Instantaneous cost function to approximate.
                Signature: (x, u, i) -> scalar.
            l_terminal: Terminal cost function to approximate.
                Signature: (x, i) -> scalar.
            state_size: State size.
            action_size: Action size.
            x_eps: Increment to the state to use when estimating the gradient.
                Default: np.sqrt(np.finfo(float).eps).
            u_eps: Increment to the action to use when estimating the gradient.
                Default: np.sqrt(np.finfo(float).eps).

        Note:
            The square root of the provided epsilons are used when computing
            the Hessians instead.
        """
        self._l = l
        self._l_terminal = l_terminal
        self._state_size = state_size
        self._action_size = action_size

        self._x_eps = x_eps if x_eps else np.sqrt(np.finfo(float).eps)
        self._u_eps = u_eps if u_eps else np.sqrt(np.finfo(float).eps)

        self._x_eps_hess = np.sqrt(self._x_eps)
        self._u_eps_hess = np.sqrt(self._u_eps)

        super(FiniteDiffCost, self).__init__()

    def l(self, x, u, i, terminal=False):
        """Instantaneous cost function.

        Args:
            x: Current state [state_size].
            u: Current control [action_size]. None if terminal.
            i: Current time step.
            terminal: Compute terminal cost. Default: False.

        Returns:
            Instantaneous cost (scalar).
        """
        if terminal:
            return float(self._l_terminal(x, i))

        return float(self._l(x, u, i))

    def l_x(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to x.

        Returns:
            dl/dx [state_size].
        """
        x = np.asarray(x, dtype=float)
        if terminal:
            return approx_fprime(x, lambda x: self._l_terminal(x, i),
                                 self._x_eps)

        return approx_fprime(x, lambda x: self._l(x, u, i), self._x_eps)

    def l_u(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to u.

        Returns:
            dl/du [action_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros(self._action_size)

        u = np.asarray(u, dtype=float)
        return approx_fprime(u, lambda u: self._l(x, u, i), self._u_eps)

    def l_xx(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to x.

        Returns:
            d^2l/dx^2 [state_size, state_size].
        """
        x = np.asarray(x, dtype=float)
        eps = self._x_eps_hess
        Q = np.vstack([
            approx_fprime(x, lambda x: self.l_x(x, u, i, terminal)[m], eps)
            for m in range(self._state_size)
        ])
        return Q

    def l_ux(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u and x.

        Returns:
            d^2l/dudx [action_size, state_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros((self._action_size, self._state_size))

        x = np.asarray(x, dtype=float)
        eps = self._x_eps_hess
        Q = np.vstack([
            approx_fprime(x, lambda x: self.l_u(x, u, i)[m], eps)
            for m in range(self._action_size)
        ])
        return Q

    def l_uu(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u.

        Returns:
            d^2l/du^2 [action_size, action_size].
        """
        if terminal:
            # Not a function of u, so the derivative is zero.
            return np.zeros((self._action_size, self._action_size))

        u = np.asarray(u, dtype=float)
        eps = self._u_eps_hess
        Q = np.vstack([
            approx_fprime(u, lambda u: self.l_u(x, u, i)[m], eps)
            for m in range(self._action_size)
        ])
        return Q


class QRCost(Cost):

    """Quadratic Regulator Instantaneous Cost.

    l(x, u) = (x - x_goal)^T Q (x - x_goal) + (u - u_goal)^T R (u - u_goal)
    """

    def __init__(self, Q, R, Q_terminal=None, x_goal=None, u_goal=None):
        """Constructs a QRCost.

        Args:
            Q: Quadratic state cost matrix [state_size, state_size].
            R: Quadratic control cost matrix [action_size, action_size].
            Q_terminal: Terminal quadratic state cost matrix
                [state_size, state_size].
            x_goal: Goal state [state_size].
            u_goal: Goal control [action_size].
        """
        self.Q = np.array(Q, dtype=float)
        self.R = np.array(R, dtype=float)

        if Q_terminal is None:
            self.Q_terminal = self.Q
        else:
            self.Q_terminal = np.array(Q_terminal, dtype=float)

        if x_goal is None:
            self.x_goal = np.zeros(self.Q.shape[0])
        else:
            self.x_goal = np.array(x_goal, dtype=float)

        if u_goal is None:
            self.u_goal = np.zeros(self.R.shape[0])
        else:
            self.u_goal = np.array(u_goal, dtype=float)

        n = self.Q.shape[0]
        m = self.R.shape[0]
        check_shape(self.Q, (n, n), "Q")
        check_shape(self.R, (m, m), "R")
        check_shape(self.Q_terminal, (n, n), "Q_terminal")
        is_equal(self.x_goal.shape, (n,), "Q & x_goal")
        is_equal(self.u_goal.shape, (m,), "R & u_goal")

        # Precompute some common constants.
        self._Q_plus_Q_T = self.Q + self.Q.T
        self._R_plus_R_T = self.R + self.R.T
        self._Q_plus_Q_T_terminal = self.Q_terminal + self.Q_terminal.T

        super(QRCost, self).__init__()

    def l(self, x, u, i, terminal=False):
        """Instantaneous cost function.

        Args:
            x: Current state [state_size].
            u: Current control [action_size]. None if terminal.
            i: Current time step.
            terminal: Compute terminal cost. Default: False.

        Returns:
            Instantaneous cost (scalar).
        """
        Q = self.Q_terminal if terminal else self.Q
        x_diff = x - self.x_goal
        squared_x_cost = x_diff.T.dot(Q).dot(x_diff)

        if terminal:
            return float(squared_x_cost)

        u_diff = u - self.u_goal
        return float(squared_x_cost + u_diff.T.dot(self.R).dot(u_diff))

    def l_x(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to x.

        Returns:
            dl/dx [state_size].
        """
        Q_plus_Q_T = self._Q_plus_Q_T_terminal if terminal else self._Q_plus_Q_T
        x_diff = x - self.x_goal
        return x_diff.T.dot(Q_plus_Q_T)

    def l_u(self, x, u, i, terminal=False):
        """Partial derivative of cost function with respect to u.

        Returns:
            dl/du [action_size].
        """
        if terminal:
            return np.zeros_like(self.u_goal)

        u_diff = u - self.u_goal
        return u_diff.T.dot(self._R_plus_R_T)

    def l_xx(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to x.

        Returns:
            d^2l/dx^2 [state_size, state_size].
        """
        return self._Q_plus_Q_T_terminal if terminal else self._Q_plus_Q_T

    def l_ux(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u and x.

        Returns:
            d^2l/dudx [action_size, state_size].
        """
        return np.zeros((self.R.shape[0], self.Q.shape[0]))

    def l_uu(self, x, u, i, terminal=False):
        """Second partial derivative of cost function with respect to u.

        Returns:
            d^2l/du^2 [action_size, action_size].
        """
        if terminal:
            return np.zeros_like(self.R)

        return self._R_plus_R_T


def quadratize_cost(cost, x, u, i, state_size, action_size):
    """Takes the second order expansion of a stage cost about a point.

    Args:
        cost: Cost function.
        x: State [state_size].
        u: Control [action_size].
        i: Time step.
        state_size: State size.
        action_size: Action size.

    Returns:
        Tuple of
            Q: d^2l/dx^2 [state_size, state_size].
            R: d^2l/du^2 [action_size, action_size].
            P: d^2l/dxdu [state_size, action_size].
            g_x: dl/dx [state_size].
            g_u: dl/du [action_size].
    """
    n, m = state_size, action_size
    Q = check_shape(cost.l_xx(x, u, i), (n, n), "l_xx")
    R = check_shape(cost.l_uu(x, u, i), (m, m), "l_uu")
    P = check_shape(cost.l_ux(x, u, i), (m, n), "l_ux").T
    g_x = check_shape(cost.l_x(x, u, i), (n,), "l_x")
    g_u = check_shape(cost.l_u(x, u, i), (m,), "l_u")
    return Q, R, P, g_x, g_u


def quadratize_final_cost(cost, x, i, state_size):
    """Takes the second order expansion of a terminal cost about a state.

    Args:
        cost: Cost function.
        x: Terminal state [state_size].
        i: Terminal time step.
        state_size: State size.

    Returns:
        Tuple of
            V: d^2l/dx^2 [state_size, state_size].
            G: dl/dx [state_size].
    """
    n = state_size
    V = check_shape(cost.l_xx(x, None, i, terminal=True), (n, n), "l_xx")
    G = check_shape(cost.l_x(x, None, i, terminal=True), (n,), "l_x")
    return V, G
