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
"""Dynamics model."""

import abc
import numpy as np
from scipy.optimize import approx_fprime
from .autodiff import as_function, jacobian
from .contracts import check_shape, is_equal


class Dynamics(metaclass=abc.ABCMeta):

    """Dynamics Model."""

    @property
    @abc.abstractmethod
    def state_size(self):
        """State size."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def action_size(self):
        """Action size."""
        raise NotImplementedError

    @abc.abstractmethod
    def f(self, x, u, i):
        """Dynamics model.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            Next state [state_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def f_x(self, x, u, i):
        """Partial derivative of dynamics model with respect to x.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/dx [state_size, state_size].
        """
        raise NotImplementedError

    @abc.abstractmethod
    def f_u(self, x, u, i):
        """Partial derivative of dynamics model with respect to u.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/du [state_size, action_size].
        """
        raise NotImplementedError


class LinearDynamics(Dynamics):

    """Linear time-invariant dynamics x' = A x + B u."""

    def __init__(self, A, B):
        """Constructs a LinearDynamics model.

        Args:
            A: State transition matrix [state_size, state_size].
            B: Control matrix [state_size, action_size].
        """
        self.A = np.array(A, dtype=float)
        self.B = np.array(B, dtype=float)

        is_equal(self.A.ndim, 2, "A dimensions")
        is_equal(self.B.ndim, 2, "B dimensions")
        self._state_size = self.A.shape[0]
        self._action_size = self.B.shape[1]
        check_shape(self.A, (self._state_size, self._state_size), "A")
        check_shape(self.B, (self._state_size, self._action_size), "B")

        super(LinearDynamics, self).__init__()

    @property
    def state_size(self):
        """State size."""
        return self._state_size

    @property
    def action_size(self):
        """Action size."""
        return self._action_size

    def f(self, x, u, i):
        """Dynamics model.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            Next state [state_size].
        """
        return self.A.dot(x) + self.B.dot(u)

    def f_x(self, x, u, i):
        """Partial derivative of dynamics model with respect to x.

        Returns:
            df/dx [state_size, state_size].
        """
        return self.A

    def f_u(self, x, u, i):
        """Partial derivative of dynamics model with respect to u.

        Returns:
            df/du [state_size, action_size].
        """
        return self.B


class AutoDiffDynamics(Dynamics):

    """Auto-differentiated Dynamics Model.

    NOTE: Enable `jax.config.update("jax_enable_x64", True)` first, otherwise
          the model and its Jacobians are only single precision.
    """

    def __init__(self, f, state_size, action_size, **kwargs):
        """Constructs an AutoDiffDynamics model.

        Args:
            f: JAX-traceable function with the following signature:
                Args:
                    x: State [state_size].
                    u: Action [action_size].
                    i: Time step.
                Returns:
                    Next state [state_size].
            state_size: State size.
            action_size: Action size.
            **kwargs: Additional keyword-arguments to pass to `jax.jit()`.
        """
        self._state_size = state_size
        self._action_size = action_size

        self._f = as_function(f, **kwargs)
        self._f_x = as_function(jacobian(f, 0), **kwargs)
        self._f_u = as_function(jacobian(f, 1), **kwargs)

        super(AutoDiffDynamics, self).__init__()

    @property
    def state_size(self):
        """State size."""
        return self._state_size

    @property
    def action_size(self):
        """Action size."""
        return self._action_size

    def f(self, x, u, i):
        """Dynamics model.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            Next state [state_size].
        """
        return self._f(x, u, i)

    def f_x(self, x, u, i):
        """Partial derivative of dynamics model with respect to x.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/dx [state_size, state_size].
        """
        return self._f_x(x, u, i)

    def f_u(self, x, u, i):
        """Partial derivative of dynamics model with respect to u.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/du [state_size, action_size].
        """
        return self._f_u(x, u, i)


class FiniteDiffDynamics(Dynamics):

    """Finite difference approximated Dynamics Model."""

    def __init__(self, f, state_size, action_size, x_eps=None, u_eps=None):
        """Constructs an FiniteDiffDynamics model.

        Args:
            f: Function to approximate. Signature: (x, u, i) -> x.
            state_size: State size.
            action_size: Action size.
            x_eps: Increment to the state to use when estimating the gradient.
                Default: np.sqrt(np.finfo(float).eps).
            u_eps: Increment to the action to use when estimating the gradient.
                Default: np.sqrt(np.finfo(float).eps).
        """
        self._f = f
        self._state_size = state_size
        self._action_size = action_size

        self._x_eps = x_eps if x_eps else np.sqrt(np.finfo(float).eps)
        self._u_eps = u_eps if u_eps else np.sqrt(np.finfo(float).eps)

        super(FiniteDiffDynamics, self).__init__()

    @property
    def state_size(self):
        """State size."""
        return self._state_size

    @property
    def action_size(self):
        """Action size."""
        return self._action_size

    def f(self, x, u, i):
        """Dynamics model.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            Next state [state_size].
        """
        return np.asarray(self._f(x, u, i), dtype=float)

    def f_x(self, x, u, i):
        """Partial derivative of dynamics model with respect to x.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/dx [state_size, state_size].
        """
        x = np.asarray(x, dtype=float)
        J = np.vstack([
            approx_fprime(x, lambda x: self.f(x, u, i)[m], self._x_eps)
            for m in range(self._state_size)
        ])
        return J

    def f_u(self, x, u, i):
        """Partial derivative of dynamics model with respect to u.

        Args:
            x: Current state [state_size].
            u: Current control [action_size].
            i: Current time step.

        Returns:
            df/du [state_size, action_size].
        """
        u = np.asarray(u, dtype=float)
        J = np.vstack([
            approx_fprime(u, lambda u: self.f(x, u, i)[m], self._u_eps)
            for m in range(self._state_size)
        ])
        return J


def linearize_dynamics(dynamics, x, u, i):
    """Linearizes a dynamics model about a point.

    Args:
        dynamics: Dynamics model.
        x: State [state_size].
        u: Control [action_size].
        i: Time step.

    Returns:
        Tuple of
            A: df/dx [state_size, state_size].
            B: df/du [state_size, action_size].
    """
    n = dynamics.state_size
    m = dynamics.action_size
    A = check_shape(dynamics.f_x(x, u, i), (n, n), "f_x")
    B = check_shape(dynamics.f_u(x, u, i), (n, m), "f_u")
    return A, B


def rollout(dynamics, x0, us):
    """Applies the dynamics open-loop from x0 along a control path.

    Args:
        dynamics: Dynamics model.
        x0: Initial state [state_size].
        us: Control path [T, action_size].

    Returns:
        State path [T+1, state_size].
    """
    us = np.asarray(us, dtype=float)
    is_equal(us.shape[1], dynamics.action_size, "control size")
    xs = np.zeros((us.shape[0] + 1, dynamics.state_size))
    xs[0] = x0
    for t in range(us.shape[0]):
        xs[t + 1] = dynamics.f(xs[t], us[t], t)
    return xs
