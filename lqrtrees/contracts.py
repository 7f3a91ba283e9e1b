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
"""Fail-fast precondition checks and checked linear algebra."""

import numpy as np

# Tolerance on the sum of sibling (or branch) probabilities.
PROBABILITY_TOL = 1e-5


class PreconditionError(ValueError):

    """Raised when a caller violates a solver's contract.

    These are programmer errors (bad dimensions, probabilities that do not sum
    to one, invalid horizons) and are never recovered from internally.
    """


class SingularMatrixError(np.linalg.LinAlgError):

    """Raised when a matrix that must be inverted is numerically singular."""


def is_true(condition, message="condition failed"):
    """Fails unless the condition holds.

    Args:
        condition: Boolean condition.
        message: Diagnostic message.

    Raises:
        PreconditionError: If the condition is false.
    """
    if not condition:
        raise PreconditionError(message)


def is_equal(a, b, what="values"):
    """Fails unless a == b."""
    if a != b:
        raise PreconditionError("{}: expected {} == {}".format(what, a, b))


def is_almost_equal(a, b, eps, what="values"):
    """Fails unless |a - b| <= eps."""
    if not np.abs(a - b) <= eps:
        raise PreconditionError("{}: expected {} == {} within {}".format(
            what, a, b, eps))


def is_greater(a, b, what="value"):
    """Fails unless a > b."""
    if not a > b:
        raise PreconditionError("{}: expected {} > {}".format(what, a, b))


def is_greater_equal(a, b, what="value"):
    """Fails unless a >= b."""
    if not a >= b:
        raise PreconditionError("{}: expected {} >= {}".format(what, a, b))


def is_between_inclusive(value, low, high, what="value"):
    """Fails unless low <= value <= high."""
    if not low <= value <= high:
        raise PreconditionError("{}: expected {} in [{}, {}]".format(
            what, value, low, high))


def is_between_lower_inclusive(value, low, high, what="value"):
    """Fails unless low <= value < high."""
    if not low <= value < high:
        raise PreconditionError("{}: expected {} in [{}, {})".format(
            what, value, low, high))


def check_shape(array, shape, name):
    """Fails unless an array has exactly the given shape.

    Args:
        array: Array-like.
        shape: Expected shape tuple.
        name: Name used in the diagnostic.

    Returns:
        The array as a float ndarray.
    """
    array = np.asarray(array, dtype=float)
    if array.shape != tuple(shape):
        raise PreconditionError("{} has shape {}, expected {}".format(
            name, array.shape, tuple(shape)))
    return array


def checked_inv(M, name="matrix"):
    """Inverts a square matrix, refusing singular or ill-conditioned input.

    Args:
        M: Square matrix [k, k].
        name: Name used in the diagnostic.

    Returns:
        Inverse of M [k, k].

    Raises:
        SingularMatrixError: If M is not finite, singular or its condition
            number exceeds 1 / machine epsilon.
    """
    M = np.asarray(M, dtype=float)
    if not np.all(np.isfinite(M)):
        raise SingularMatrixError("{} has non-finite entries".format(name))

    cond = np.linalg.cond(M)
    if not np.isfinite(cond) or cond > 1.0 / np.finfo(float).eps:
        raise SingularMatrixError("{} is singular (condition number {})".format(
            name, cond))

    try:
        return np.linalg.inv(M)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError("{} is singular: {}".format(name, e))
