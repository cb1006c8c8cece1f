"""Adjoint (reverse-mode) differentiation oracles.

The projected Jacobian is assembled one column at a time from reverse sweeps:
seed the derivatives of the recorded outputs with a basis vector, propagate
backward and read the derivatives of the recorded inputs. Anything exposing the
four methods of :class:`AdjointOracle` can be injected; an AD tool wraps its
tape behind that interface.

:class:`JacobianTapeOracle` is a self-contained oracle backed by an explicit
linearization (dense array, ``scipy.sparse`` matrix or ``LinearOperator``).
"""
from __future__ import annotations

import warnings
from abc import ABC, abstractmethod

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla


class AdjointOracle(ABC):
    """Interface of a reverse-mode differentiation collaborator.

    ``index`` arguments address positions on the tape; they and ``value`` may
    be scalars or equally shaped arrays.
    """

    @abstractmethod
    def clear_derivatives(self):
        """Zero all pending derivative seeds and results."""

    @abstractmethod
    def seed_output(self, index, value):
        """Set the adjoint seed of the output(s) at ``index``."""

    @abstractmethod
    def propagate_adjoint(self):
        """Run the reverse sweep."""

    @abstractmethod
    def read_input(self, index):
        """Derivative(s) accumulated at the input position(s) ``index``."""


def numerical_jacobian(func, y, eps: float | None = None, mode: str = 'fd'):
    """Dense Jacobian of ``func`` at ``y`` by forward differences or complex step.

    ``mode='cs'`` needs ``func`` to accept complex input (numpy ufuncs, no
    ``float()`` or ``math`` calls). If the complex-step evaluation raises, a
    ``RuntimeWarning`` is emitted and forward differences are used instead.
    """
    mode = (mode or 'fd').lower()
    if mode not in ('fd', 'cs'):
        raise ValueError(f"mode must be 'fd' or 'cs', got {mode!r}")
    y = np.asarray(y, dtype=float)
    shape = y.shape
    flat = y.reshape(-1)
    n = flat.size

    def _f(v):
        return np.asarray(func(v.reshape(shape))).reshape(-1)

    if mode == 'cs':
        h = 1e-30
        y_cs = flat.astype(complex)
        try:
            cols = []
            for i in range(n):
                y_cs_i = y_cs.copy()
                y_cs_i[i] += 1j * h
                cols.append(np.imag(_f(y_cs_i)) / h)
            return np.column_stack(cols)
        except (TypeError, ValueError) as exc:
            warnings.warn(
                f"complex-step differentiation failed ({exc}); using forward differences",
                RuntimeWarning,
                stacklevel=2,
            )

    F0 = _f(flat)
    J = np.empty((F0.size, n))
    base = np.sqrt(np.finfo(float).eps) if eps is None else float(eps)
    for i in range(n):
        h = base * max(1.0, abs(flat[i]))
        y_eps = flat.copy()
        y_eps[i] += h
        J[:, i] = (_f(y_eps) - F0) / h
    return J


class JacobianTapeOracle(AdjointOracle):
    """Oracle whose tape is a recorded linearization ``y = jacobian @ x``.

    Inputs ``x`` occupy tape positions ``[0, n_in)`` and outputs ``y`` occupy
    ``[n_in, n_in + n_out)``. A reverse sweep adds ``jacobian.T @ ybar`` to the
    input adjoints.

    Parameters
    ----------
    jacobian : ndarray, sparse matrix or LinearOperator, shape (n_out, n_in)
        The recorded linearization.
    """

    def __init__(self, jacobian) -> None:
        if sp.issparse(jacobian):
            jacobian = jacobian.tocsr()
        self.jacobian = jacobian
        self._op = spla.aslinearoperator(jacobian)
        self.n_out, self.n_in = self._op.shape
        self.adjoints = np.zeros(self.n_in + self.n_out)
        self.n_sweeps = 0

    @classmethod
    def for_fixed_point_map(cls, G, u, jacobian=None, mode: str = 'fd'):
        """Oracle for the fixed-point map ``G`` linearized at ``u``.

        The tape records ``dG/du`` transposed, so that a reverse sweep seeded
        with ``v`` returns the directional derivative ``(dG/du) v`` and the
        projected Jacobian becomes ``R^T (dG/du) R``.

        Parameters
        ----------
        G : callable
            ``G(u) -> ndarray`` with the shape of ``u``.
        u : ndarray
            Linearization point.
        jacobian : callable, optional
            Analytical ``jacobian(u) -> dG/du``; numerical differentiation is
            used when omitted.
        mode : {'fd', 'cs'}
            Forward differences or complex step for the numerical Jacobian.
        """
        if jacobian is not None:
            J = jacobian(u)
        else:
            J = numerical_jacobian(G, u, mode=mode)
        if isinstance(J, spla.LinearOperator):
            return cls(J.adjoint())
        return cls(J.T)

    @property
    def input_positions(self) -> np.ndarray:
        return np.arange(self.n_in)

    @property
    def output_positions(self) -> np.ndarray:
        return np.arange(self.n_in, self.n_in + self.n_out)

    def clear_derivatives(self):
        self.adjoints[:] = 0.0

    def seed_output(self, index, value):
        index = np.asarray(index)
        if np.any(index < self.n_in):
            raise IndexError("seed_output addresses an input position")
        self.adjoints[index] = value

    def propagate_adjoint(self):
        ybar = self.adjoints[self.n_in:]
        self.adjoints[:self.n_in] += self._op.rmatvec(ybar)
        self.n_sweeps += 1

    def read_input(self, index):
        index = np.asarray(index)
        if np.any(index >= self.n_in):
            raise IndexError("read_input addresses an output position")
        return self.adjoints[index]
