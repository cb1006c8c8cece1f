from __future__ import annotations

import numpy as np
import scipy.linalg as sla

from .errors import IllConditionedJacobianError


class ProjectedJacobianEngine:
    """Reduced Jacobian on the Krylov basis and the Newton step matrix.

    For every basis vector ``R_j`` one reverse sweep of the oracle yields
    ``DR_j = (dG/du)^T R_j`` and the reduced Jacobian entries
    ``ProjectedJacobian[i, j] = R_i^T DR_j``. The Newton step matrix is the
    explicit inverse of ``I - ProjectedJacobian``; the reduced dimension is
    small so a dense inverse is cheap.

    Parameters
    ----------
    reductions : CollectiveReductions
        Global dot products.
    max_condition : float, default 1e12
        Largest acceptable condition number of ``I - ProjectedJacobian``.
    verbose : bool, default False
        Print progress of the column sweeps.
    """

    def __init__(self, reductions, max_condition: float = 1e12, verbose: bool = False) -> None:
        self.reductions = reductions
        self.max_condition = float(max_condition)
        self.verbose = bool(verbose)
        self.DR = np.zeros((0, 0))
        self.projected_jacobian = np.zeros((0, 0))
        self.newton_inverse = np.zeros((0, 0))

    @property
    def dimension(self) -> int:
        return self.newton_inverse.shape[0]

    def reset(self) -> None:
        self.DR = np.zeros((0, 0))
        self.projected_jacobian = np.zeros((0, 0))
        self.newton_inverse = np.zeros((0, 0))

    def invert(self, projected_jacobian: np.ndarray) -> np.ndarray:
        """Return ``inv(I - projected_jacobian)``.

        Raises
        ------
        IllConditionedJacobianError
            If the operator is singular, non-finite or its condition number
            exceeds ``max_condition``.
        """
        k = projected_jacobian.shape[0]
        if k == 0:
            return np.zeros((0, 0))
        A = np.eye(k) - projected_jacobian
        if not np.all(np.isfinite(A)):
            raise IllConditionedJacobianError("I - ProjectedJacobian has non-finite entries")
        cond = np.linalg.cond(A)
        if not np.isfinite(cond) or cond > self.max_condition:
            raise IllConditionedJacobianError(
                f"I - ProjectedJacobian is ill-conditioned (cond={cond:.3e})", condition=cond
            )
        try:
            return sla.inv(A)
        except sla.LinAlgError as exc:
            raise IllConditionedJacobianError(str(exc), condition=cond) from exc

    def use_identity(self, k: int) -> None:
        """Install the identity as Newton step matrix (no subspace correction)."""
        self.newton_inverse = np.eye(k)

    def compute(self, basis, oracle, input_indices, output_indices) -> np.ndarray:
        """Rebuild the reduced Jacobian for ``basis`` and invert the Newton operator.

        Parameters
        ----------
        basis : KrylovBasisBuilder
            Source of the accepted basis vectors.
        oracle : AdjointOracle
            Reverse-mode differentiation collaborator.
        input_indices, output_indices : array_like of int, shape (npt, nvar)
            Tape positions of every field entry of the fixed-point map's input
            and output.

        Returns
        -------
        ndarray, shape (k, k)
            The Newton step matrix.
        """
        input_indices = np.asarray(input_indices).reshape(-1)
        output_indices = np.asarray(output_indices).reshape(-1)
        n = int(np.prod(basis.shape))
        if input_indices.size != n or output_indices.size != n:
            raise ValueError(
                f"index maps must have {n} entries, got {input_indices.size} and {output_indices.size}"
            )

        k = basis.count
        R = basis.matrix()
        self.DR = np.zeros((n, k))
        self.projected_jacobian = np.zeros((k, k))

        if self.verbose and self.reductions.is_root:
            print("Evaluate R^T (dG/du)^T R[i] for i = ", end="")
        for j in range(k):
            oracle.clear_derivatives()
            oracle.seed_output(output_indices, R[:, j])
            oracle.propagate_adjoint()
            self.DR[:, j] = oracle.read_input(input_indices)
            self.projected_jacobian[:, j] = self.reductions.gram(R, self.DR[:, j:j + 1])[:, 0]
            if self.verbose and self.reductions.is_root:
                print(f"{j + 1}, ", end="")
        if self.verbose and self.reductions.is_root:
            print("...", end="")

        self.newton_inverse = self.invert(self.projected_jacobian)
        if self.verbose and self.reductions.is_root:
            print(" done.")
        return self.newton_inverse
