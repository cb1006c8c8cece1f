import numpy as np
import pytest

from subspace_newton import InvalidConfiguration, JacobianTapeOracle, NewtonUpdateOnSubspace


# smooth trend, oscillatory mode and constant on four points; pairwise
# t.c = o.c = 0 and t.o = -2
t = np.array([-1.5, -0.5, 0.5, 1.5]).reshape(4, 1)
o = np.array([1.0, -1.0, 1.0, -1.0]).reshape(4, 1)
c = np.ones((4, 1))


def _feed(acc, raw):
    acc.load(raw)
    return acc.compute().copy()


@pytest.mark.parametrize("args", [
    (1, 2, 4, 1, 0),      # nsample < 2
    (3, 2, 4, 1, 5),      # nptdomain > npt
    (3, 0, 4, 1, 0),      # no basis capacity
])
def test_resize_rejects_invalid_configuration(args):
    acc = NewtonUpdateOnSubspace()
    with pytest.raises(InvalidConfiguration):
        acc.resize(*args)
    with pytest.raises(RuntimeError):
        acc.compute()


def test_size_reports_capacity_not_count():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 5, 10, 2)
    assert acc.size() == 5
    assert acc.basis_dimension == 0


def test_without_basis_output_equals_raw_update():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 2, 4, 1)
    rng = np.random.default_rng(0)
    prev = np.zeros((4, 1))
    for _ in range(5):
        raw = rng.standard_normal((4, 1))
        out = _feed(acc, raw)
        np.testing.assert_allclose(out, raw)
        # stable-part deltas are recorded
        np.testing.assert_allclose(acc.history.latest(), raw - prev)
        prev = raw


def test_returned_buffer_is_internal_storage():
    acc = NewtonUpdateOnSubspace()
    acc.resize(2, 1, 3, 1)
    acc.load(np.ones(3))
    first = acc.compute()
    assert first is acc.fp_result()
    acc.load(2 * np.ones(3))
    second = acc.compute()
    assert second is acc.fp_result()
    np.testing.assert_allclose(second, 2.0)


def test_oscillatory_mode_grows_one_vector_and_is_damped():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 2, 4, 1)
    threshold = 5.0

    # increments: t, o, 0.5 o + 1e-3 c, 0.25 o
    raws = [t, t + o, t + 1.5 * o + 1e-3 * c, t + 1.75 * o + 1e-3 * c]
    grown = []
    for raw in raws:
        _feed(acc, raw)
        grown.append(acc.check_basis(threshold))
    assert grown == [False, False, False, True]
    assert acc.basis_dimension == 1
    np.testing.assert_allclose(np.abs(acc.basis.vector(0)), np.abs(o) / 2.0, atol=1e-9)

    # linear map whose only slow mode is o, contraction 0.9
    M = 0.9 * (o @ o.T) / 4.0
    oracle = JacobianTapeOracle(M)
    acc.oracle = oracle
    N = acc.compute_projected_jacobian(0, oracle.input_positions.reshape(4, 1),
                                       oracle.output_positions.reshape(4, 1))
    np.testing.assert_allclose(N, [[10.0]], rtol=1e-9)

    u = raws[-1]
    # first step after growth only re-anchors the reduced coordinates
    raw5 = M @ u
    u = _feed(acc, raw5)
    np.testing.assert_allclose(u, raw5, atol=1e-12)

    raw6 = M @ u
    u = _feed(acc, raw6)
    amp_raw = abs((o.T @ raw6).item()) / 2.0
    amp_corrected = abs((o.T @ u).item()) / 2.0
    assert amp_raw > 1.0
    assert amp_corrected < 1e-8 * amp_raw


def test_stale_projected_jacobian_is_an_error():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 2, 4, 1)
    for raw in [t, t + o, t + 1.5 * o + 1e-3 * c, t + 1.75 * o + 1e-3 * c]:
        _feed(acc, raw)
    assert acc.check_basis(5.0)
    acc.load(t)
    with pytest.raises(RuntimeError):
        acc.compute()


def test_compute_projected_jacobian_requires_oracle_and_selects_zone():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 2, 4, 1)
    with pytest.raises(ValueError):
        acc.compute_projected_jacobian(0, np.arange(4), np.arange(4, 8))

    for raw in [t, t + o, t + 1.5 * o + 1e-3 * c, t + 1.75 * o + 1e-3 * c]:
        _feed(acc, raw)
    assert acc.check_basis(5.0)

    zone_oracles = {0: JacobianTapeOracle(np.zeros((4, 4))), 1: JacobianTapeOracle(0.5 * np.eye(4))}
    acc.oracle = zone_oracles
    N = acc.compute_projected_jacobian(1, np.arange(4), np.arange(4, 8))
    np.testing.assert_allclose(N, [[2.0]])
    assert zone_oracles[0].n_sweeps == 0 and zone_oracles[1].n_sweeps == 1
    with pytest.raises(KeyError):
        acc.compute_projected_jacobian(7, np.arange(4), np.arange(4, 8))


def test_reset_restarts_growth_and_keeps_latest_sample():
    acc = NewtonUpdateOnSubspace(oracle=JacobianTapeOracle(0.5 * np.eye(4)))
    acc.resize(3, 2, 4, 1)
    for raw in [t, t + o, t + 1.5 * o + 1e-3 * c, t + 1.75 * o + 1e-3 * c]:
        _feed(acc, raw)
    assert acc.check_basis(5.0)
    acc.compute_projected_jacobian(0, np.arange(4), np.arange(4, 8))
    stored = acc.basis.vectors[0].copy()
    latest = acc.history.latest().copy()

    acc.reset()
    assert acc.basis_dimension == 0
    assert len(acc.history) == 1
    np.testing.assert_allclose(acc.history[0], latest)
    np.testing.assert_allclose(acc.basis.vectors[0], stored)
    assert acc.p_R.size == 0 and acc.pn_R.size == 0

    # no basis: raw update passes through
    out = _feed(acc, t)
    np.testing.assert_allclose(out, t)


def test_second_growth_reanchors_reduced_coordinates():
    acc = NewtonUpdateOnSubspace()
    acc.resize(3, 2, 4, 1)
    # stable direction orthogonal to both o and c
    s = np.array([1.0, 1.0, -1.0, -1.0]).reshape(4, 1)
    # slow modes o (0.9) and c (0.5)
    M = 0.9 * (o @ o.T) / 4.0 + 0.5 * (c @ c.T) / 4.0
    oracle = JacobianTapeOracle(M)
    acc.oracle = oracle
    idx_in = oracle.input_positions.reshape(4, 1)
    idx_out = oracle.output_positions.reshape(4, 1)

    for raw in [t, t + o, t + 1.5 * o + 1e-3 * c, t + 1.75 * o + 1e-3 * c]:
        _feed(acc, raw)
    assert acc.check_basis(5.0)
    acc.compute_projected_jacobian(0, idx_in, idx_out)

    raw5 = s + 3.0 * o + c
    np.testing.assert_allclose(_feed(acc, raw5), raw5, atol=1e-12)
    assert acc.p_R.size == 1 and acc.pn_R.size == 1

    # window now starts with 0.5 o + 1e-3 c, 0.25 o: the c direction emerges
    assert acc.check_basis(5.0)
    assert acc.basis_dimension == 2
    np.testing.assert_allclose(np.abs(acc.basis.vector(1)), c / 2.0, atol=1e-9)
    N = acc.compute_projected_jacobian(0, idx_in, idx_out)
    np.testing.assert_allclose(N, np.diag([10.0, 2.0]), atol=1e-9)

    # first step on the larger basis: pn_R is re-anchored to the new p_R
    raw6 = s + 2.0 * o + 4.0 * c
    np.testing.assert_allclose(_feed(acc, raw6), raw6, atol=1e-12)
    assert acc.p_R.size == 2 and acc.pn_R.size == 2
    np.testing.assert_allclose(np.abs(acc.p_R), [4.0, 8.0], atol=1e-12)
    np.testing.assert_allclose(acc.pn_R, acc.p_R)

    # Newton step: pn_R + diag(10, 2) (p_R - pn_R) with p_R = [3, 6], pn_R = [4, 8]
    raw7 = s + 1.5 * o + 3.0 * c
    u = _feed(acc, raw7)
    np.testing.assert_allclose(np.abs(acc.pn_R), [4.0, 8.0], atol=1e-12)
    np.testing.assert_allclose(acc.p_R / acc.pn_R, [-1.5, 0.5], atol=1e-9)
    np.testing.assert_allclose(u, s - 3.0 * o + 2.0 * c, atol=1e-9)
