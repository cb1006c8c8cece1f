"""subspace_newton: Newton correction of fixed-point iterations on an unstable subspace.

Many implicit solvers advance with a fixed-point outer loop ``u <- G(u)``
whose convergence is held back by a handful of slowly decaying (or growing)
modes. This package detects those modes from the history of solution
increments and applies a Newton step restricted to the subspace they span,
while the remaining, fast-converging part of the update is left alone.

Building blocks
---------------
* :class:`SolutionHistoryWindow` - rolling window of stable-part increments.
* :class:`KrylovBasisBuilder` - Householder-QR Krylov criterion and
  Gram-Schmidt growth of an orthonormal basis.
* :class:`SubspaceProjector` - reduced coordinates ``p_R = R^T u``.
* :class:`ProjectedJacobianEngine` - ``R^T (dG/du)^T R`` from reverse sweeps of
  an :class:`AdjointOracle` and the Newton step matrix.
* :class:`NewtonUpdateOnSubspace` - the per-iteration correction.
* :class:`FixedPointSolver` - a complete outer loop.

High-level entry point
----------------------
``solve_fixed_point`` builds the accelerator, an oracle linearizing ``G`` and
the outer loop, and returns the converged iterate with diagnostics.

Quick start
-----------
>>> import numpy as np
>>> from subspace_newton import solve_fixed_point
>>> M = np.diag([0.99, 0.2, 0.1])
>>> b = np.ones(3)
>>> u, res, ok, it, grown = solve_fixed_point(lambda u: M @ u + b, np.zeros(3))
>>> ok
True
"""

import numpy as np

from .errors import InvalidConfiguration, IllConditionedJacobianError, BasisCapacityWarning
from .reductions import SerialCommunicator, CollectiveReductions
from .history import SolutionHistoryWindow
from .basis import KrylovBasisBuilder
from .projection import SubspaceProjector
from .adjoint import AdjointOracle, JacobianTapeOracle, numerical_jacobian
from .jacobian import ProjectedJacobianEngine
from .newton_update import NewtonUpdateOnSubspace
from .fixed_point import FixedPointSolver

__version__ = '0.1.0'

__all__ = [
    'solve_fixed_point',
    # Accelerator
    'NewtonUpdateOnSubspace', 'FixedPointSolver',
    # Components
    'SolutionHistoryWindow', 'KrylovBasisBuilder', 'SubspaceProjector', 'ProjectedJacobianEngine',
    # Collaborators
    'AdjointOracle', 'JacobianTapeOracle', 'numerical_jacobian',
    'SerialCommunicator', 'CollectiveReductions',
    # Errors
    'InvalidConfiguration', 'IllConditionedJacobianError', 'BasisCapacityWarning',
]


def solve_fixed_point(
    G,
    u0,
    n_sample=3,
    n_basis=2,
    threshold=10.0,
    tol=1e-10,
    max_iter=500,
    jacobian=None,
    mode='fd',
    n_var=1,
    n_pt_domain=0,
    comm=None,
    accelerator_opts=None,
    solver_opts=None,
    verbose=False,
):
    """Iterate ``u <- G(u)`` to a fixed point with subspace Newton correction.

    Parameters
    ----------
    G : callable
        Fixed-point map ``G(u) -> ndarray`` with the shape of ``u0``.
    u0 : array_like
        Initial iterate; ``u0.size`` must be a multiple of ``n_var``.
    n_sample : int, default 3
        Number of increments in the history window.
    n_basis : int, default 2
        Maximum dimension of the unstable subspace.
    threshold : float, default 10.0
        Critical value of the Krylov criterion ``|r_0 / r_1|``.
    tol : float, default 1e-10
        Convergence tolerance on ``||u_new - u||``.
    max_iter : int, default 500
        Maximum number of outer iterations.
    jacobian : callable or None
        Analytical ``jacobian(u) -> dG/du`` (dense, sparse or
        ``LinearOperator``). If ``None`` the Jacobian is approximated
        numerically each time the basis grows.
    mode : {'fd', 'cs'}, default 'fd'
        Numerical differentiation scheme when ``jacobian`` is ``None``.
    n_var : int, default 1
        Variables per point; fields are laid out as ``(u0.size // n_var, n_var)``.
    n_pt_domain : int, default 0
        Owned points on this process (0: all of them).
    comm : object or None
        mpi4py-style communicator for distributed runs.
    accelerator_opts : dict or None
        Keyword arguments forwarded to :class:`NewtonUpdateOnSubspace`
        (``oracle``, ``dependency_tol``, ``max_condition``). An injected
        ``oracle`` is used instead of the linearization built from ``jacobian``.
    solver_opts : dict or None
        Keyword arguments forwarded to :class:`FixedPointSolver`
        (``zone``, ``oracle_factory``, ``input_indices``, ``output_indices``).
    verbose : bool, default False
        Print iteration and basis growth diagnostics.

    Returns
    -------
    u : ndarray
        Final iterate shaped like ``u0``.
    residuals : ndarray
        ``||u_new - u||`` per iteration.
    success : bool
        Whether ``tol`` was reached.
    iterations : int
        Number of outer iterations.
    growth_iterations : list[int]
        Iterations at which the basis grew.
    """
    if accelerator_opts is None:
        accelerator_opts = {}
    if solver_opts is None:
        solver_opts = {}

    u0 = np.array(u0, dtype=float)
    if u0.size % n_var:
        raise ValueError(f"u0 has {u0.size} entries, not a multiple of n_var={n_var}")
    npt = u0.size // n_var

    # 1) Accelerator
    acc = NewtonUpdateOnSubspace(comm=comm, verbose=verbose, **accelerator_opts)
    acc.resize(n_sample, n_basis, npt, n_var, n_pt_domain)

    # 2) Oracle factory (analytical or numerical linearization)
    _solver_opts = dict(solver_opts)
    if 'oracle_factory' not in _solver_opts and accelerator_opts.get('oracle') is None:
        _solver_opts['oracle_factory'] = (
            lambda u: JacobianTapeOracle.for_fixed_point_map(G, u, jacobian=jacobian, mode=mode)
        )

    # 3) Outer loop
    solver = FixedPointSolver(
        G, u0, acc, threshold,
        tol=tol, max_iter=max_iter, verbose=verbose,
        **_solver_opts,
    )
    return solver.solve()
