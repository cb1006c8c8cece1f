from __future__ import annotations

import warnings
from typing import Callable, List, Tuple

import numpy as np

from .adjoint import JacobianTapeOracle
from .errors import IllConditionedJacobianError


class FixedPointSolver:
    """Outer fixed-point loop ``u <- G(u)`` with subspace Newton correction.

    Each iteration evaluates ``G``, corrects the raw update with the
    accelerator, checks the Krylov criterion while the basis has room and
    rebuilds the projected Jacobian whenever a basis vector was appended. An
    oracle injected into the accelerator is used as is; otherwise the oracle
    for the rebuild is produced by ``oracle_factory`` at the current iterate.

    Parameters
    ----------
    G : callable
        Fixed-point map ``G(u) -> ndarray`` with the shape of ``u0``.
    u0 : ndarray
        Initial iterate.
    accelerator : NewtonUpdateOnSubspace
        A sized accelerator whose field shape holds ``u0.size`` entries.
    threshold : float
        Critical value of the Krylov criterion.
    oracle_factory : callable, optional
        ``oracle_factory(u) -> AdjointOracle``. When omitted and the
        accelerator carries no oracle, defaults to a :class:`JacobianTapeOracle`
        linearizing ``G`` at ``u``.
    tol : float, default 1e-10
        Convergence tolerance on the global norm of ``u_new - u``.
    max_iter : int, default 500
        Maximum number of outer iterations.
    zone : int, default 0
        Zone identifier forwarded to the accelerator.
    input_indices, output_indices : array_like of int, optional
        Tape positions of the map's input and output. Default to the layout of
        :class:`JacobianTapeOracle`.
    verbose : bool, default False
        Print one line per iteration.
    """

    def __init__(
        self,
        G: Callable,
        u0,
        accelerator,
        threshold: float,
        oracle_factory: Callable | None = None,
        tol: float = 1e-10,
        max_iter: int = 500,
        zone: int = 0,
        input_indices=None,
        output_indices=None,
        verbose: bool = False,
    ) -> None:
        self.G = G
        self.u0 = np.array(u0, dtype=float)
        self.accelerator = accelerator
        self.threshold = float(threshold)
        self.tol = float(tol)
        self.max_iter = int(max_iter)
        self.zone = zone
        self.verbose = bool(verbose)

        n = self.u0.size
        if int(np.prod(accelerator.shape)) != n:
            raise ValueError(
                f"accelerator holds {int(np.prod(accelerator.shape))} entries, u0 has {n}"
            )
        if oracle_factory is None and accelerator.oracle is None:
            oracle_factory = lambda u: JacobianTapeOracle.for_fixed_point_map(self.G, u)
        self.oracle_factory = oracle_factory
        self.input_indices = (
            np.arange(n).reshape(accelerator.shape) if input_indices is None else np.asarray(input_indices)
        )
        self.output_indices = (
            np.arange(n, 2 * n).reshape(accelerator.shape) if output_indices is None else np.asarray(output_indices)
        )

        self.residuals: List[float] = []
        self.growth_iterations: List[int] = []

    def _rebuild_jacobian(self, u: np.ndarray, iteration: int) -> None:
        acc = self.accelerator
        if self.oracle_factory is not None:
            acc.oracle = self.oracle_factory(u)
        try:
            acc.compute_projected_jacobian(self.zone, self.input_indices, self.output_indices)
        except IllConditionedJacobianError as exc:
            warnings.warn(
                f"iteration {iteration}: {exc}; continuing without subspace correction",
                RuntimeWarning,
                stacklevel=3,
            )
            acc.jacobian.use_identity(acc.basis_dimension)

    def solve(self) -> Tuple[np.ndarray, np.ndarray, bool, int, List[int]]:
        """Iterate until ``||u_new - u|| < tol`` or ``max_iter`` is reached.

        Returns
        -------
        u : ndarray
            Final iterate, shaped like ``u0``.
        residuals : ndarray
            Global norm of ``u_new - u`` per iteration.
        success : bool
            ``True`` iff the tolerance was met.
        iterations : int
            Number of outer iterations performed.
        growth_iterations : list[int]
            Iterations at which a basis vector was appended.
        """
        acc = self.accelerator
        shape = self.u0.shape
        u = self.u0.reshape(acc.shape).copy()
        red = acc.reductions

        for iteration in range(1, self.max_iter + 1):
            acc.load(self.G(u.reshape(shape)))
            u_new = acc.compute().copy()
            res = red.norm(u_new - u)
            self.residuals.append(res)
            u = u_new

            if self.verbose and red.is_root:
                print(f"it {iteration:4d}  |du| = {res:.3e}  basis = {acc.basis_dimension}")
            if res < self.tol:
                return u.reshape(shape), np.array(self.residuals), True, iteration, self.growth_iterations

            if acc.basis_dimension < acc.size() and acc.check_basis(self.threshold):
                self.growth_iterations.append(iteration)
                self._rebuild_jacobian(u.reshape(shape), iteration)

        return u.reshape(shape), np.array(self.residuals), False, self.max_iter, self.growth_iterations
