"""Tests for dynamics models and cost functions."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from numpy.testing import assert_allclose

from lqrtrees.autodiff import as_function, double_precision_enabled
from lqrtrees.contracts import PreconditionError
from lqrtrees.controller import iLQRSolver
from lqrtrees.cost import (AutoDiffCost, FiniteDiffCost, QRCost,
                           quadratize_cost, quadratize_final_cost)
from lqrtrees.dynamics import (AutoDiffDynamics, FiniteDiffDynamics,
                               LinearDynamics, linearize_dynamics, rollout)


@pytest.fixture
def problem(make_problem):
    return make_problem(3, 2)


@pytest.fixture
def point(rng):
    return rng.uniform(-1.0, 1.0, 3), rng.uniform(-1.0, 1.0, 2)


def pendulum(x, u, i):
    """Damped pendulum-like nonlinear dynamics, traceable by JAX."""
    dt = 0.05
    return jnp.array([
        x[0] + dt * x[1],
        x[1] + dt * (-jnp.sin(x[0]) - 0.1 * x[1] + u[0]),
    ])


def pendulum_numpy(x, u, i):
    dt = 0.05
    return np.array([
        x[0] + dt * x[1],
        x[1] + dt * (-np.sin(x[0]) - 0.1 * x[1] + u[0]),
    ])


class TestDynamics:

    def test_linear_dynamics(self, problem, point):
        A, B, _, _, _ = problem
        x, u = point
        dynamics = LinearDynamics(A, B)
        assert dynamics.state_size == 3
        assert dynamics.action_size == 2
        assert_allclose(dynamics.f(x, u, 0), A.dot(x) + B.dot(u))

        A_lin, B_lin = linearize_dynamics(dynamics, x, u, 0)
        assert_allclose(A_lin, A)
        assert_allclose(B_lin, B)

    def test_linear_dynamics_shapes(self):
        with pytest.raises(PreconditionError):
            LinearDynamics(np.eye(3), np.ones((2, 1)))
        with pytest.raises(PreconditionError):
            LinearDynamics(np.eye(3), np.ones(3))

    def test_autodiff_matches_linear(self, problem, point):
        A, B, _, _, _ = problem
        x, u = point
        A_j = jnp.asarray(A)
        B_j = jnp.asarray(B)
        dynamics = AutoDiffDynamics(lambda x, u, i: A_j @ x + B_j @ u, 3, 2)

        assert_allclose(dynamics.f(x, u, 0), A.dot(x) + B.dot(u), atol=1e-12)
        assert_allclose(dynamics.f_x(x, u, 0), A, atol=1e-12)
        assert_allclose(dynamics.f_u(x, u, 0), B, atol=1e-12)

    def test_autodiff_is_double_precision(self):
        x = np.array([1.0, 2.0])
        u = np.array([0.5])
        scale = 1.0 + 1e-12
        dynamics = AutoDiffDynamics(lambda x, u, i: scale * x + u[0], 2, 1)

        f_x = dynamics.f_x(x, u, 0)
        assert f_x.dtype == np.float64
        # Lost entirely in float32.
        assert f_x[0, 0] - 1.0 == pytest.approx(1e-12, rel=1e-3)

    def test_autodiff_exposes_only_the_dynamics_interface(self):
        dynamics = AutoDiffDynamics(pendulum, 2, 1)
        public = {name for name in dir(dynamics) if not name.startswith("_")}
        assert public == {"state_size", "action_size", "f", "f_x", "f_u"}

    def test_single_precision_warns(self):
        assert double_precision_enabled()
        jax.config.update("jax_enable_x64", False)
        try:
            assert not double_precision_enabled()
            with pytest.warns(RuntimeWarning, match="jax_enable_x64"):
                as_function(lambda x: 2.0 * x)
        finally:
            jax.config.update("jax_enable_x64", True)
        assert double_precision_enabled()

    def test_finite_diff_matches_autodiff(self):
        x = np.array([0.3, -0.2])
        u = np.array([0.1])
        autodiff = AutoDiffDynamics(pendulum, 2, 1)
        finite_diff = FiniteDiffDynamics(pendulum_numpy, 2, 1)

        assert_allclose(finite_diff.f(x, u, 0), autodiff.f(x, u, 0))
        assert_allclose(finite_diff.f_x(x, u, 0), autodiff.f_x(x, u, 0),
                        atol=1e-6)
        assert_allclose(finite_diff.f_u(x, u, 0), autodiff.f_u(x, u, 0),
                        atol=1e-6)

    def test_linearize_checks_shapes(self, point):
        x, u = point
        dynamics = FiniteDiffDynamics(lambda x, u, i: x[:2], 2, 2)
        with pytest.raises(PreconditionError):
            linearize_dynamics(dynamics, x, u, 0)

    def test_rollout(self, problem):
        A, B, _, _, x0 = problem
        us = np.ones((4, 2))
        xs = rollout(LinearDynamics(A, B), x0, us)
        assert xs.shape == (5, 3)
        assert_allclose(xs[0], x0)
        assert_allclose(xs[2], A.dot(A.dot(x0) + B.dot(us[0])) + B.dot(us[1]))


class TestQRCost:

    def test_value(self, problem, point):
        _, _, Q, R, _ = problem
        x, u = point
        cost = QRCost(Q, R)
        assert cost.l(x, u, 0) == pytest.approx(x.dot(Q).dot(x) +
                                                u.dot(R).dot(u))
        assert cost.l(x, None, 0, terminal=True) == pytest.approx(
            x.dot(Q).dot(x))

    def test_goals(self, problem, point):
        _, _, Q, R, _ = problem
        x, u = point
        cost = QRCost(Q, R, x_goal=x, u_goal=u)
        assert cost.l(x, u, 0) == pytest.approx(0.0)
        assert_allclose(cost.l_x(x, u, 0), np.zeros(3), atol=1e-12)
        assert_allclose(cost.l_u(x, u, 0), np.zeros(2), atol=1e-12)

    def test_derivatives(self, problem, point):
        _, _, Q, R, _ = problem
        x, u = point
        cost = QRCost(Q, R, Q_terminal=3.0 * Q)
        assert_allclose(cost.l_x(x, u, 0), 2.0 * Q.dot(x))
        assert_allclose(cost.l_u(x, u, 0), 2.0 * R.dot(u))
        assert_allclose(cost.l_xx(x, u, 0), 2.0 * Q)
        assert_allclose(cost.l_uu(x, u, 0), 2.0 * R)
        assert_allclose(cost.l_ux(x, u, 0), np.zeros((2, 3)))
        assert_allclose(cost.l_xx(x, None, 0, terminal=True), 6.0 * Q)
        assert_allclose(cost.l_uu(x, None, 0, terminal=True), np.zeros((2, 2)))

    def test_mismatched_goal(self, problem):
        _, _, Q, R, _ = problem
        with pytest.raises(PreconditionError):
            QRCost(Q, R, x_goal=np.zeros(2))


class TestAutoDiffCost:

    @pytest.fixture
    def costs(self, problem):
        _, _, Q, R, _ = problem
        Q_j = jnp.asarray(Q)
        R_j = jnp.asarray(R)

        def l(x, u, i):
            return x @ Q_j @ x + u @ R_j @ u + 0.1 * jnp.sum(x) * jnp.sum(u)

        def l_terminal(x, i):
            return x @ Q_j @ x

        return AutoDiffCost(l, l_terminal, 3, 2), (Q, R)

    def test_derivatives(self, costs, point):
        cost, (Q, R) = costs
        x, u = point
        assert cost.l(x, u, 0) == pytest.approx(
            x.dot(Q).dot(x) + u.dot(R).dot(u) + 0.1 * x.sum() * u.sum())
        assert_allclose(cost.l_x(x, u, 0), 2.0 * Q.dot(x) + 0.1 * u.sum(),
                        atol=1e-12)
        assert_allclose(cost.l_u(x, u, 0), 2.0 * R.dot(u) + 0.1 * x.sum(),
                        atol=1e-12)
        assert_allclose(cost.l_xx(x, u, 0), 2.0 * Q, atol=1e-12)
        assert_allclose(cost.l_uu(x, u, 0), 2.0 * R, atol=1e-12)
        assert_allclose(cost.l_ux(x, u, 0), 0.1 * np.ones((2, 3)), atol=1e-12)

    def test_terminal(self, costs, point):
        cost, (Q, _) = costs
        x, _ = point
        assert cost.l(x, None, 5, terminal=True) == pytest.approx(
            x.dot(Q).dot(x))
        assert_allclose(cost.l_u(x, None, 5, terminal=True), np.zeros(2))
        assert_allclose(cost.l_ux(x, None, 5, terminal=True),
                        np.zeros((2, 3)))

    def test_quadratize(self, costs, point):
        cost, (Q, R) = costs
        x, u = point
        Q_t, R_t, P, g_x, g_u = quadratize_cost(cost, x, u, 0, 3, 2)
        assert_allclose(Q_t, 2.0 * Q, atol=1e-12)
        assert_allclose(R_t, 2.0 * R, atol=1e-12)
        assert P.shape == (3, 2)
        assert_allclose(P, 0.1 * np.ones((3, 2)), atol=1e-12)
        assert g_x.shape == (3,)
        assert g_u.shape == (2,)

        V, G = quadratize_final_cost(cost, x, 5, 3)
        assert_allclose(V, 2.0 * Q, atol=1e-12)
        assert_allclose(G, 2.0 * Q.dot(x), atol=1e-12)


class TestFiniteDiffCost:

    def test_matches_qr_cost(self, problem, point):
        _, _, Q, R, _ = problem
        x, u = point
        qr = QRCost(Q, R)
        cost = FiniteDiffCost(lambda x, u, i: qr.l(x, u, i),
                              lambda x, i: qr.l(x, None, i, terminal=True), 3,
                              2)

        assert cost.l(x, u, 0) == pytest.approx(qr.l(x, u, 0))
        assert_allclose(cost.l_x(x, u, 0), qr.l_x(x, u, 0), atol=1e-5)
        assert_allclose(cost.l_u(x, u, 0), qr.l_u(x, u, 0), atol=1e-5)
        assert_allclose(cost.l_xx(x, u, 0), qr.l_xx(x, u, 0), atol=1e-2)
        assert_allclose(cost.l_uu(x, u, 0), qr.l_uu(x, u, 0), atol=1e-2)
        assert_allclose(cost.l_ux(x, u, 0), qr.l_ux(x, u, 0), atol=1e-2)
        assert_allclose(cost.l_x(x, None, 0, terminal=True),
                        qr.l_x(x, None, 0, terminal=True), atol=1e-5)


class TestNonlinear:

    def test_autodiff_pendulum_swing(self):
        dynamics = AutoDiffDynamics(pendulum, 2, 1)
        cost = QRCost(np.diag([1.0, 0.1]), 0.01 * np.eye(1),
                      Q_terminal=100.0 * np.eye(2))
        solver = iLQRSolver(dynamics, cost)

        x0 = np.array([1.0, 0.0])
        xs, us, J = solver.solve(60, x0, np.zeros(1), max_iters=50)
        _, _, J_passive = solver.forward_pass(x0, 0.0)

        assert np.isfinite(J)
        assert J == pytest.approx(J_passive)
        passive = rollout(dynamics, x0, np.zeros((60, 1)))
        J_zero = sum(cost.l(passive[t], np.zeros(1), t) for t in range(60))
        J_zero += cost.l(passive[-1], None, 60, terminal=True)
        assert J < J_zero
        assert abs(xs[-1, 0]) < abs(passive[-1, 0])
