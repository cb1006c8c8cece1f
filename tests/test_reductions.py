import numpy as np

from subspace_newton.reductions import CollectiveReductions, SerialCommunicator, stacked_qr


class DoublingComm:
    """Pretends two ranks hold identical data: sums come back doubled."""
    rank = 0
    size = 2

    def allreduce(self, value):
        return 2 * value

    def allgather(self, value):
        return [value, value]

    def bcast(self, value, root=0):
        return value


def test_dot_and_norm_skip_halo_rows():
    red = CollectiveReductions(n_pt_domain=2, n_var=2)
    a = np.array([[1.0, 2.0], [3.0, 4.0], [100.0, 100.0]])
    b = np.ones((3, 2))
    assert red.dot(a, b) == 10.0
    np.testing.assert_allclose(red.norm(a), np.sqrt(30.0))


def test_reductions_go_through_communicator():
    red = CollectiveReductions(n_pt_domain=3, n_var=1, comm=DoublingComm())
    a = np.array([[1.0], [1.0], [1.0]])
    assert red.dot(a, a) == 6.0
    G = red.gram(np.eye(3)[:, :2], np.ones((3, 1)))
    np.testing.assert_allclose(G, [[2.0], [2.0]])


def test_serial_qr_matches_numpy():
    rng = np.random.default_rng(0)
    A = rng.standard_normal((12, 3))
    red = CollectiveReductions(n_pt_domain=12, n_var=1, comm=SerialCommunicator())
    q, r = red.householder_qr(A)
    np.testing.assert_allclose(q @ r, A, atol=1e-12)
    np.testing.assert_allclose(np.abs(np.diag(r)), np.abs(np.diag(np.linalg.qr(A)[1])), rtol=1e-12)


def test_stacked_qr_reproduces_global_factorization():
    rng = np.random.default_rng(1)
    A = rng.standard_normal((10, 3))
    blocks = [A[:6], A[6:]]
    local = [np.linalg.qr(blk) for blk in blocks]
    rs = [r for _, r in local]

    parts = []
    for rank, (q_loc, _) in enumerate(local):
        q, r = stacked_qr(q_loc, rs, rank)
        parts.append(q)
    Q = np.vstack(parts)

    np.testing.assert_allclose(Q @ r, A, atol=1e-12)
    np.testing.assert_allclose(Q.T @ Q, np.eye(3), atol=1e-12)
    r_ref = np.linalg.qr(A)[1]
    np.testing.assert_allclose(np.abs(np.diag(r)), np.abs(np.diag(r_ref)), rtol=1e-10)


def test_agree_uses_root_decision():
    class RootSaysNo(DoublingComm):
        def bcast(self, value, root=0):
            return False

    red = CollectiveReductions(2, 1, comm=RootSaysNo())
    assert red.agree(True) is False
    assert CollectiveReductions(2, 1).agree(True) is True


def test_distributed_qr_combines_rank_factors():
    rng = np.random.default_rng(2)
    A = rng.standard_normal((8, 3))
    red = CollectiveReductions(n_pt_domain=8, n_var=1, comm=DoublingComm())
    q, r = red.householder_qr(A)

    # both ranks hold A, so the global matrix is [A; A]
    assert q.shape == (8, 3)
    np.testing.assert_allclose(q @ r, A, atol=1e-12)
    np.testing.assert_allclose(2 * q.T @ q, np.eye(3), atol=1e-12)
    r_ref = np.linalg.qr(np.vstack([A, A]))[1]
    np.testing.assert_allclose(np.abs(np.diag(r)), np.abs(np.diag(r_ref)), rtol=1e-10)
