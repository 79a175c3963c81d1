"""Test sparse and functional Yee operators."""
import numpy as np
import pytest

from modesource import operators


def uniform_dxes(shape, dx):
    return [[np.full(n, float(dx)) for n in shape] for _ in range(2)]


def test_vec_unvec_inverse():
    np.random.seed(0)
    shape = (3, 4, 5)
    f = [np.random.rand(*shape) + 1j * np.random.rand(*shape) for _ in range(3)]
    v = operators.vec(f)
    assert v.shape == (3 * 60,)
    for a, b in zip(operators.unvec(v, shape), f):
        np.testing.assert_array_equal(a, b)


def test_vec_none():
    assert operators.vec(None) is None
    assert operators.unvec(None, (1, 1, 1)) is None


def test_shift_rejects_bad_distance():
    with pytest.raises(ValueError, match="Shift must be"):
        operators.shift_with_bloch(0, (3, 3, 3), 2)


@pytest.mark.parametrize("k", [0.0, 0.37, -1.1])
def test_deriv_forward_bloch_planewave(k):
    dx = 0.25
    shape = (12, 1, 1)
    dxes = uniform_dxes(shape, dx)
    x = dx * np.arange(shape[0])
    f = np.exp(-1j * k * x).reshape(shape)

    deriv = operators.deriv_forward(dxes[0], np.array([k, 0, 0]))[0]
    expected = (np.exp(-1j * k * dx) - 1) / dx * f
    np.testing.assert_allclose(deriv @ f.flatten(order="F"),
                               expected.flatten(order="F"),
                               atol=1e-12)


def test_e_full_annihilates_discrete_planewave():
    dx = 0.1
    shape = (20, 1, 1)
    dxes = uniform_dxes(shape, dx)
    eps = 2.25
    k = 1.3
    omega = 2 / dx * np.sin(k * dx / 2) / np.sqrt(eps)

    x = dx * np.arange(shape[0])
    zero = np.zeros(shape, dtype=complex)
    e = [zero, zero, np.exp(-1j * k * x).reshape(shape)]
    epsilon = [np.full(shape, eps) for _ in range(3)]

    A = operators.e_full(omega,
                         dxes,
                         operators.vec(epsilon),
                         bloch_vec=np.array([k, 0, 0]))
    residual = A @ operators.vec(e)
    assert np.linalg.norm(residual) < 1e-9 * np.linalg.norm(operators.vec(e))


def test_curl_h_fn_matches_sparse_curl():
    np.random.seed(1)
    shape = (6, 5, 4)
    dxes = uniform_dxes(shape, 0.5)
    h = [np.zeros(shape, dtype=complex) for _ in range(3)]
    for component in h:
        component[1:-1, 1:-1, 1:-1] = np.random.rand(4, 3, 2)

    functional = operators.curl_h_fn(dxes)(h)
    sparse_result = operators.unvec(
        operators.curl_h(dxes) @ operators.vec(h), shape)
    for a, b in zip(functional, sparse_result):
        np.testing.assert_allclose(a, b, atol=1e-12)


def test_e_full_preconditioners_are_inverse():
    dxes = uniform_dxes((3, 4, 2), 0.3)
    Pl, Pr = operators.e_full_preconditioners(dxes)
    np.testing.assert_allclose((Pl @ Pr).diagonal(), 1)
