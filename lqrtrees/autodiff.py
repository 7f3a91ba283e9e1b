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
"""Autodifferentiation helper methods."""

import warnings

import jax
import numpy as np


def jacobian(f, wrt):
    """Computes the Jacobian of a vector function with respect to an argument.

    Args:
        f: JAX-traceable function.
        wrt: Index of the positional argument to differentiate with respect
            to.

    Returns:
        Function with the same signature as f returning
        [output_size, input_size].
    """
    return jax.jacfwd(f, argnums=wrt)


def gradient(f, wrt):
    """Computes the gradient of a scalar function with respect to an argument.

    Args:
        f: JAX-traceable scalar function.
        wrt: Index of the positional argument to differentiate with respect
            to.

    Returns:
        Function with the same signature as f returning [input_size].
    """
    return jax.grad(f, argnums=wrt)


def hessian(f, wrt, wrt_outer=None):
    """Computes the second derivative of a scalar function.

    Args:
        f: JAX-traceable scalar function.
        wrt: Index of the inner positional argument.
        wrt_outer: Index of the outer positional argument.
            Default: same as wrt.

    Returns:
        Function with the same signature as f returning
        d/d(wrt_outer) (df/d(wrt)) [wrt_size, wrt_outer_size].
    """
    if wrt_outer is None or wrt_outer == wrt:
        return jax.hessian(f, argnums=wrt)
    return jax.jacfwd(jax.grad(f, argnums=wrt), argnums=wrt_outer)


def double_precision_enabled():
    """Whether JAX computes in 64-bit floats."""
    return jax.dtypes.canonicalize_dtype(np.float64) == np.float64


def as_function(expr, **kwargs):
    """Compiles a JAX-traceable function into a numpy-returning function.

    JAX computes in float32 unless 64-bit mode is enabled with
    `jax.config.update("jax_enable_x64", True)` before any model is built.
    The outputs are always cast to float64, but in 32-bit mode they only
    carry single precision, so a RuntimeWarning is issued.

    Args:
        expr: JAX-traceable function.
        **kwargs: Additional key-word arguments to pass to `jax.jit()`.

    Returns:
        A function returning numpy float arrays.
    """
    if not double_precision_enabled():
        warnings.warn(
            "jax_enable_x64 is off, derivatives are single precision",
            RuntimeWarning)

    compiled = jax.jit(expr, **kwargs)

    def f(*args):
        return np.asarray(compiled(*args), dtype=float)

    return f
