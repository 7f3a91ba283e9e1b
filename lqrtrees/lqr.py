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
"""Finite horizon discrete-time Linear Quadratic Regulator."""

import numpy as np
from .contracts import check_shape, checked_inv, is_equal, is_greater


def riccati_gain(A, B, R, V):
    """Optimal feedback gain for a linear-quadratic step.

    K = -(R + B^T V B)^-1 B^T V A

    Args:
        A: State transition matrix [state_size, state_size].
        B: Control matrix [state_size, action_size].
        R: Control cost matrix [action_size, action_size].
        V: Value matrix of the next step [state_size, state_size].

    Returns:
        K [action_size, state_size].
    """
    inv_term = checked_inv(R + B.T.dot(V).dot(B), "R + B^T V B")
    return -inv_term.dot(B.T.dot(V).dot(A))


def riccati_value(A, B, Q, R, K, V):
    """Cost-to-go matrix of a linear-quadratic step under the gain K.

    V_t = Q + K^T R K + (A + B K)^T V (A + B K)

    Returns:
        V_t [state_size, state_size].
    """
    closed_loop = A + B.dot(K)
    V_t = Q + K.T.dot(R).dot(K) + closed_loop.T.dot(V).dot(closed_loop)
    return 0.5 * (V_t + V_t.T)  # To maintain symmetry.


class LQR(object):

    """Finite Horizon Linear Quadratic Regulator.

    Minimizes sum_t (x_t^T Q x_t + u_t^T R u_t) + x_T^T Q_terminal x_T
    subject to x_{t+1} = A x_t + B u_t.
    """

    def __init__(self, A, B, Q, R, T, Q_terminal=None):
        """Constructs an LQR.

        Args:
            A: State transition matrix [state_size, state_size].
            B: Control matrix [state_size, action_size].
            Q: Quadratic state cost matrix [state_size, state_size].
            R: Quadratic control cost matrix [action_size, action_size].
            T: Horizon length.
            Q_terminal: Terminal quadratic state cost matrix. Default: Q.
        """
        is_greater(T, 1, "horizon")
        A = np.asarray(A, dtype=float)
        B = np.asarray(B, dtype=float)
        is_equal(B.ndim, 2, "B dimensions")
        n, m = B.shape

        self.A = check_shape(A, (n, n), "A")
        self.B = B
        self.Q = check_shape(Q, (n, n), "Q")
        self.R = check_shape(R, (m, m), "R")
        if Q_terminal is None:
            self.Q_terminal = self.Q
        else:
            self.Q_terminal = check_shape(Q_terminal, (n, n), "Q_terminal")
        self.T = T

        self.Ks = None
        self.Vs = None

    @property
    def state_size(self):
        """State size."""
        return self.A.shape[0]

    @property
    def action_size(self):
        """Action size."""
        return self.B.shape[1]

    def solve(self):
        """Runs the backward Riccati recursion.

        Returns:
            Tuple of
                Ks: Feedback gains [T, action_size, state_size].
                Vs: Value matrices [T+1, state_size, state_size].
        """
        n, m = self.state_size, self.action_size
        Ks = np.zeros((self.T, m, n))
        Vs = np.zeros((self.T + 1, n, n))
        Vs[-1] = self.Q_terminal

        for t in range(self.T - 1, -1, -1):
            Ks[t] = riccati_gain(self.A, self.B, self.R, Vs[t + 1])
            Vs[t] = riccati_value(self.A, self.B, self.Q, self.R, Ks[t],
                                  Vs[t + 1])

        self.Ks = Ks
        self.Vs = Vs
        return Ks, Vs

    def forward_pass(self, x0):
        """Rolls out the optimal policy.

        Args:
            x0: Initial state [state_size].

        Returns:
            Tuple of
                xs: State path [T+1, state_size].
                us: Control path [T, action_size].
                costs: Cost of every time step, terminal last [T+1].
        """
        if self.Ks is None:
            self.solve()

        xs = np.zeros((self.T + 1, self.state_size))
        us = np.zeros((self.T, self.action_size))
        costs = np.zeros(self.T + 1)
        xs[0] = check_shape(x0, (self.state_size,), "x0")

        for t in range(self.T):
            us[t] = self.Ks[t].dot(xs[t])
            costs[t] = xs[t].dot(self.Q).dot(xs[t]) + us[t].dot(self.R).dot(us[t])
            xs[t + 1] = self.A.dot(xs[t]) + self.B.dot(us[t])

        costs[-1] = xs[-1].dot(self.Q_terminal).dot(xs[-1])
        return xs, us, costs
