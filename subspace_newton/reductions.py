"""Global reductions over partitioned solution fields.

Every scalar that feeds a basis-growth decision (dot products, norms, the
diagonal of the QR factor) must be identical on all processes holding a piece
of the same field. :class:`CollectiveReductions` computes the local
contribution on the owned rows only (halo rows are skipped) and combines it
through a communicator with the mpi4py lowercase API (``rank``, ``size``,
``allreduce``, ``allgather``, ``bcast``). Without a communicator the
:class:`SerialCommunicator` is used and the reductions are plain numpy.
"""
from __future__ import annotations

import numpy as np
import scipy.linalg as sla


class SerialCommunicator:
    """Single-process stand-in for an MPI communicator."""

    rank = 0
    size = 1

    def allreduce(self, value):
        return value

    def allgather(self, value):
        return [value]

    def bcast(self, value, root: int = 0):
        return value


def stacked_qr(local_q: np.ndarray, local_rs, rank: int):
    """Combine per-process QR factors into the global factorization (TSQR).

    Parameters
    ----------
    local_q : ndarray, shape (m_local, k_local)
        Orthogonal factor of this process' block of rows.
    local_rs : list of ndarray
        Triangular factors of every process, in rank order.
    rank : int
        Position of this process in ``local_rs``.

    Returns
    -------
    q : ndarray, shape (m_local, k)
        This process' rows of the global orthogonal factor.
    r : ndarray, shape (k, k)
        Global triangular factor, identical on every process.
    """
    stacked = np.vstack(local_rs)
    q2, r = sla.qr(stacked, mode='economic', check_finite=False)
    offsets = np.cumsum([0] + [blk.shape[0] for blk in local_rs])
    q = local_q @ q2[offsets[rank]:offsets[rank + 1]]
    return q, r


class CollectiveReductions:
    """Dot products, norms and QR restricted to owned rows, reduced globally.

    Parameters
    ----------
    n_pt_domain : int
        Number of owned points (rows of a field) on this process.
    n_var : int
        Number of variables per point.
    comm : object, optional
        mpi4py-style communicator. Defaults to :class:`SerialCommunicator`.
    """

    def __init__(self, n_pt_domain: int, n_var: int, comm=None) -> None:
        self.comm = comm if comm is not None else SerialCommunicator()
        self.n_pt_domain = int(n_pt_domain)
        self.n_var = int(n_var)
        # owned entries of a flattened (npt, nvar) field
        self.n_owned = self.n_pt_domain * self.n_var

    @property
    def is_root(self) -> bool:
        return getattr(self.comm, 'rank', 0) == 0

    def owned(self, field: np.ndarray) -> np.ndarray:
        """Flattened view of the owned entries of ``field``."""
        return field.reshape(-1)[:self.n_owned]

    def dot(self, a: np.ndarray, b: np.ndarray) -> float:
        local = float(np.dot(self.owned(a), self.owned(b)))
        return float(self.comm.allreduce(local))

    def norm(self, a: np.ndarray) -> float:
        return float(np.sqrt(self.dot(a, a)))

    def gram(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        """Global ``A^T B`` for column matrices with one row per field entry."""
        n = self.n_owned
        local = A[:n].T @ B[:n]
        return np.asarray(self.comm.allreduce(local))

    def householder_qr(self, A: np.ndarray):
        """Economic Householder QR of a distributed column matrix.

        Only owned rows take part; the returned ``q`` has ``n_owned`` rows and
        the returned ``r`` is the same on every process.
        """
        local = A[:self.n_owned]
        q_loc, r_loc = sla.qr(local, mode='economic', check_finite=False)
        if getattr(self.comm, 'size', 1) == 1:
            return q_loc, r_loc
        local_rs = self.comm.allgather(r_loc)
        return stacked_qr(q_loc, local_rs, self.comm.rank)

    def agree(self, flag: bool) -> bool:
        """Adopt the decision of rank 0 so basis dimensions never diverge."""
        return bool(self.comm.bcast(bool(flag), root=0))
