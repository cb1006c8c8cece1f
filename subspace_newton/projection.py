from __future__ import annotations

import numpy as np


class SubspaceProjector:
    """Split full-space vectors against the current Krylov basis.

    ``p_R`` holds the latest reduced coordinates and ``pn_R`` the previous
    ones; the pair drives the reduced Newton recurrence.
    """

    def __init__(self, basis, reductions) -> None:
        self.basis = basis
        self.reductions = reductions
        self.p_R = np.zeros(0)
        self.pn_R = np.zeros(0)

    def reset(self) -> None:
        self.p_R = np.zeros(0)
        self.pn_R = np.zeros(0)

    def project(self, raw: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
        """Project ``raw`` onto the basis: ``p_R = R^T raw``, ``p = R p_R``.

        The previous coordinates are saved to ``pn_R`` first.
        """
        self.pn_R = self.p_R
        R = self.basis.matrix()
        self.p_R = self.reductions.gram(R, raw.reshape(-1, 1))[:, 0]
        return self.reconstruct(self.p_R, out=out)

    def reconstruct(self, coords: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
        """Full-space vector ``R coords``; ``pn_R`` is left untouched."""
        R = self.basis.matrix()
        if out is None:
            out = np.empty(self.basis.shape)
        np.dot(R, coords, out=out.reshape(-1))
        return out
