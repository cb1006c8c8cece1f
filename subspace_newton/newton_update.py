"""Newton update on the subspace of slowly converging modes.

The raw update of a fixed-point iteration is split against an orthonormal
basis ``R`` of the unstable subspace into a projected part ``p = R p_R`` and a
stable remainder ``q``. The stable remainder is passed through unchanged while
the reduced coordinates follow the Newton recurrence (Shroff & Keller)::

    p_R <- pn_R + inv(I - R^T (dG/du)^T R) (p_R - pn_R)

Increments of ``q`` are kept in a rolling window; a Householder QR of the
window decides when a new basis direction has emerged.

Typical use inside an outer loop::

    acc = NewtonUpdateOnSubspace(oracle=oracle)
    acc.resize(nsample, nbasis, npt, nvar)
    for it in range(max_iter):
        acc.load(G(u))
        u = acc.compute().copy()
        if acc.check_basis(threshold):
            acc.compute_projected_jacobian(zone, input_indices, output_indices)
"""
from __future__ import annotations

from collections.abc import Mapping

import numpy as np

from .basis import KrylovBasisBuilder
from .errors import InvalidConfiguration
from .history import SolutionHistoryWindow
from .jacobian import ProjectedJacobianEngine
from .projection import SubspaceProjector
from .reductions import CollectiveReductions


class NewtonUpdateOnSubspace:
    """Quasi-Newton correction restricted to a detected unstable subspace.

    Parameters
    ----------
    oracle : AdjointOracle or Mapping[int, AdjointOracle], optional
        Reverse-mode differentiation collaborator used to build the projected
        Jacobian; a mapping selects the oracle by zone.
    comm : object, optional
        mpi4py-style communicator for global reductions.
    dependency_tol : float, default 1e-10
        Relative norm below which a Gram-Schmidt candidate is discarded.
    max_condition : float, default 1e12
        Largest acceptable condition number of ``I - ProjectedJacobian``.
    verbose : bool, default False
        Print basis growth and Jacobian rebuild progress.
    """

    def __init__(
        self,
        oracle=None,
        comm=None,
        dependency_tol: float = 1e-10,
        max_condition: float = 1e12,
        verbose: bool = False,
    ) -> None:
        self.oracle = oracle
        self.comm = comm
        self.dependency_tol = dependency_tol
        self.max_condition = max_condition
        self.verbose = verbose
        self._ready = False

    def resize(self, nsample: int, nbasis: int, npt: int, nvar: int, nptdomain: int = 0) -> None:
        """Allocate all buffers.

        Parameters
        ----------
        nsample : int
            Number of increments in the history window (>= 2).
        nbasis : int
            Capacity of the unstable-subspace basis.
        npt : int
            Number of points of a field, halos included.
        nvar : int
            Number of variables per point.
        nptdomain : int, default 0
            Number of owned points (<= npt); 0 means all points are owned.

        Raises
        ------
        InvalidConfiguration
            On inconsistent sizes; the object is left unusable.
        """
        self._ready = False
        if nptdomain > npt or nsample < 2:
            raise InvalidConfiguration(
                f"Invalid Newton update parameters (nsample={nsample}, npt={npt}, nptdomain={nptdomain})"
            )
        if nbasis < 1 or npt < 1 or nvar < 1 or nptdomain < 0:
            raise InvalidConfiguration(
                f"Invalid Newton update parameters (nbasis={nbasis}, npt={npt}, nvar={nvar}, nptdomain={nptdomain})"
            )

        shape = (int(npt), int(nvar))
        self.shape = shape
        self.n_pt_domain = int(nptdomain) if nptdomain else int(npt)
        self.reductions = CollectiveReductions(self.n_pt_domain, nvar, comm=self.comm)

        self.work = np.zeros(shape)      # raw update in, corrected solution out
        self._stable = np.zeros(shape)   # stable part q of the previous call
        self.p = np.zeros(shape)         # projected (unstable) part

        self.history = SolutionHistoryWindow(nsample, shape)
        self.basis = KrylovBasisBuilder(
            nbasis, shape, self.reductions,
            dependency_tol=self.dependency_tol, verbose=self.verbose,
        )
        self.projector = SubspaceProjector(self.basis, self.reductions)
        self.jacobian = ProjectedJacobianEngine(
            self.reductions, max_condition=self.max_condition, verbose=self.verbose,
        )
        self._newton_dim = 0
        self._ready = True

    def size(self) -> int:
        """Capacity of the basis (not the number of accepted vectors)."""
        self._require_ready()
        return self.basis.capacity

    @property
    def basis_dimension(self) -> int:
        """Number of accepted basis vectors (``iBasis``)."""
        self._require_ready()
        return self.basis.count

    @property
    def p_R(self) -> np.ndarray:
        return self.projector.p_R

    @property
    def pn_R(self) -> np.ndarray:
        return self.projector.pn_R

    def reset(self) -> None:
        """Discard all history except the latest sample and restart basis growth.

        Stored basis vectors are not cleared; they are overwritten as the basis
        grows again.
        """
        self._require_ready()
        self.history.reset(keep_latest=True)
        self.basis.reset()
        self.projector.reset()
        self.jacobian.reset()
        self._newton_dim = 0

    def load(self, raw) -> None:
        """Copy a raw (uncorrected) update into the working buffer."""
        self._require_ready()
        self.work[...] = np.asarray(raw).reshape(self.shape)

    def check_basis(self, threshold: float) -> bool:
        """Append a basis vector if the Krylov criterion exceeds ``threshold``."""
        self._require_ready()
        return self.basis.check(self.history, threshold)

    def compute_projected_jacobian(self, zone, input_indices, output_indices) -> np.ndarray:
        """Rebuild the projected Jacobian and the Newton step matrix.

        To be called right after the basis has grown.

        Parameters
        ----------
        zone : int
            Zone identifier; selects the oracle when a mapping was injected.
        input_indices, output_indices : array_like of int, shape (npt, nvar)
            Tape positions of the input and output of the fixed-point map.

        Returns
        -------
        ndarray
            The Newton step matrix ``inv(I - ProjectedJacobian)``.
        """
        self._require_ready()
        if self.oracle is None:
            raise ValueError("an adjoint oracle is required to compute the projected Jacobian")
        oracle = self.oracle[zone] if isinstance(self.oracle, Mapping) else self.oracle
        return self.jacobian.compute(self.basis, oracle, input_indices, output_indices)

    def _update_projected_solution(self) -> None:
        k = self.basis.count
        if self.jacobian.dimension != k:
            raise RuntimeError(
                f"projected Jacobian has dimension {self.jacobian.dimension} but the basis has {k} "
                "vectors; call compute_projected_jacobian after the basis grows"
            )
        proj = self.projector
        if k > self._newton_dim:
            proj.pn_R = proj.p_R.copy()
            self._newton_dim = k

        proj.p_R = proj.pn_R + self.jacobian.newton_inverse @ (proj.p_R - proj.pn_R)
        proj.reconstruct(proj.p_R, out=self.p)

    def compute(self) -> np.ndarray:
        """Correct the raw update held in ``work`` and return the new solution.

        The returned array is internal storage: it is valid until the next
        call and must be copied if it is needed longer.
        """
        self._require_ready()
        if self.basis.count > 0:
            self.projector.project(self.work, out=self.p)
            np.subtract(self.work, self.p, out=self.work)   # work: q
        else:
            self.p[...] = 0.0

        # delta q into the retained buffer, hand it to the history, get a free one back
        np.subtract(self.work, self._stable, out=self._stable)
        free = self.history.push(self._stable)
        self._stable, self.work = self.work, free          # _stable: q

        if self.basis.count > 0:
            self._update_projected_solution()

        np.add(self._stable, self.p, out=self.work)
        return self.work

    def fp_result(self) -> np.ndarray:
        """Latest corrected solution (same buffer ``compute`` returned)."""
        self._require_ready()
        return self.work

    def _require_ready(self) -> None:
        if not self._ready:
            raise RuntimeError("NewtonUpdateOnSubspace is not sized; call resize with valid parameters")
