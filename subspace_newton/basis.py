from __future__ import annotations

import math
import warnings

import numpy as np

from .errors import BasisCapacityWarning
from .reductions import CollectiveReductions


class KrylovBasisBuilder:
    """Grow an orthonormal basis of the slowly converging subspace.

    The basis lives in one contiguous ``(capacity, npt, nvar)`` array; the
    first ``count`` slots are the accepted vectors. A new vector is accepted
    when the Krylov criterion on the history window holds: with ``r_i`` the
    diagonal of the Householder QR factor of the window (oldest increment
    first), the ratio ``|r_0 / r_1|`` exceeds the threshold. The candidate is
    the first column of Q.

    Parameters
    ----------
    capacity : int
        Maximum number of basis vectors (``nBasis``).
    shape : tuple
        Field shape ``(npt, nvar)``.
    reductions : CollectiveReductions
        Global dot products, norms and QR.
    dependency_tol : float, default 1e-10
        A candidate whose norm after Gram-Schmidt falls below this fraction of
        its initial norm lies in the span of the basis and is rejected.
    verbose : bool, default False
        Print a line on every growth event.
    """

    def __init__(
        self,
        capacity: int,
        shape,
        reductions: CollectiveReductions,
        dependency_tol: float = 1e-10,
        verbose: bool = False,
    ) -> None:
        self.capacity = int(capacity)
        self.shape = tuple(shape)
        self.reductions = reductions
        self.dependency_tol = float(dependency_tol)
        self.verbose = bool(verbose)
        self.size = int(np.prod(self.shape))
        self.vectors = np.zeros((self.capacity,) + self.shape)
        self.count = 0
        self.last_ratio = math.nan
        self._capacity_warned = False

    @property
    def is_full(self) -> bool:
        return self.count >= self.capacity

    def vector(self, i: int) -> np.ndarray:
        if not 0 <= i < self.count:
            raise IndexError("basis index out of range")
        return self.vectors[i]

    def matrix(self) -> np.ndarray:
        """Accepted vectors as columns, a ``(npt*nvar, count)`` view."""
        return self.vectors[:self.count].reshape(self.count, self.size).T

    def reset(self) -> None:
        """Forget the accepted vectors; their storage is kept for reuse."""
        self.count = 0
        self.last_ratio = math.nan
        self._capacity_warned = False

    def krylov_ratio(self, r_diag: np.ndarray) -> float:
        """``|r_0 / r_1|``, or NaN when undefined (``r_1 == 0``)."""
        if r_diag.size < 2 or r_diag[1] == 0.0:
            return math.nan
        return abs(float(r_diag[0]) / float(r_diag[1]))

    def check(self, window, threshold: float) -> bool:
        """Append a basis vector if the Krylov criterion holds.

        Parameters
        ----------
        window : SolutionHistoryWindow
            History of stable-part increments; nothing happens until it is full.
        threshold : float
            Critical value of ``|r_0 / r_1|``.

        Returns
        -------
        bool
            ``True`` iff a vector was appended.
        """
        if not window.is_full:
            return False

        if self.is_full:
            # No maintenance policy for a full basis: growth stays frozen.
            if not self._capacity_warned:
                warnings.warn(
                    f"Krylov basis is full ({self.capacity} vectors); no further growth.",
                    BasisCapacityWarning,
                    stacklevel=3,
                )
                self._capacity_warned = True
            return False

        q, r = self.reductions.householder_qr(window.as_matrix())
        ratio = self.krylov_ratio(np.diag(r))
        self.last_ratio = ratio

        accept = (not math.isnan(ratio)) and ratio > threshold
        if not self.reductions.agree(accept):
            return False

        if self.verbose and self.reductions.is_root:
            print(f"Krylov criterion fulfilled ({ratio:g}), appending new basis vector ... ", end="")

        new = self.vectors[self.count]
        new[...] = 0.0
        # halo rows stay zero; the outer solver refreshes them
        self.reductions.owned(new)[:] = q[:, 0]
        initial = self.reductions.norm(new)

        for i in range(self.count):
            prev = self.vectors[i]
            new -= self.reductions.dot(new, prev) * prev
        nrm = self.reductions.norm(new)

        if not self.reductions.agree(nrm > self.dependency_tol * initial):
            if self.verbose and self.reductions.is_root:
                print("rejected, candidate lies in the current basis.")
            return False

        new /= nrm
        self.count += 1
        if self.verbose and self.reductions.is_root:
            print("done.")
        return True
