"""Test the Yee grid and its structures."""
import unittest

import numpy as np

from modesource import grid


class TestYeeGrid(unittest.TestCase):

    def setUp(self):
        self.grid = grid.YeeGrid((10, 8, 1), 0.5, origin=(-2.5, -2, 0))

    def test_ndim(self):
        self.assertEqual(self.grid.ndim, 2)
        self.assertEqual(grid.YeeGrid((4, 4, 4), 1).ndim, 3)

    def test_yee_positions(self):
        xs, ys, zs = self.grid.yee_positions("Ex")
        np.testing.assert_allclose(xs[:2], [-2.25, -1.75])
        np.testing.assert_allclose(ys[:2], [-2, -1.5])

        xs, ys, zs = self.grid.yee_positions("Hz")
        np.testing.assert_allclose(xs[0], -2.25)
        np.testing.assert_allclose(ys[0], -1.75)
        np.testing.assert_allclose(zs[0], 0)

    def test_grid_points(self):
        np.testing.assert_allclose(self.grid.grid_points(0),
                                   -2.5 + 0.5 * np.arange(10))
        np.testing.assert_allclose(self.grid.grid_points(1),
                                   -2 + 0.5 * np.arange(8))

    def test_index_of(self):
        self.assertEqual(self.grid.index_of(0, 0.0), 5)
        self.assertEqual(self.grid.index_of(1, 0.1), 4)

    def test_indices_within(self):
        self.assertEqual(self.grid.indices_within(0, -1, 1), slice(3, 8))
        self.assertEqual(self.grid.indices_within(1, -np.inf, np.inf),
                         slice(0, 8))
        self.assertEqual(self.grid.indices_within(2, 5, 6), slice(0, 1))
        self.assertEqual(self.grid.indices_within(0, 10, 11), slice(0, 0))

    def test_dxes(self):
        dxes = self.grid.dxes
        self.assertEqual(len(dxes), 2)
        for a, n in enumerate((10, 8, 1)):
            np.testing.assert_allclose(dxes[0][a], 0.5 * np.ones(n))
            np.testing.assert_allclose(dxes[1][a], 0.5 * np.ones(n))


def test_component_shift():
    np.testing.assert_array_equal(grid.component_shift("Ey"), [0, 0.5, 0])
    np.testing.assert_array_equal(grid.component_shift("Hy"), [0.5, 0, 0.5])


def test_permittivity_at_last_shape_wins():
    shapes = [
        grid.box((0, 0), (2, 2), 4.0),
        grid.box((0.5, 0), (1, 1), 9.0),
    ]
    g = grid.YeeGrid((10, 10, 1), 0.5, origin=(-2.5, -2.5, 0), shapes=shapes)
    eps = g.permittivity_at(np.array([[0.6, 0, 0], [-0.5, 0, 0], [2, 2, 0]]))
    np.testing.assert_array_equal(eps, [9, 4, 1])


def test_permittivity_respects_z_span_in_3d():
    shapes = [grid.box((0, 0), (2, 2), 4.0, z_span=(-0.5, 0.5))]
    g = grid.YeeGrid((4, 4, 4), 1, origin=(-2, -2, -2), shapes=shapes)
    eps = g.permittivity_at(np.array([[0, 0, 0], [0, 0, 1]]))
    np.testing.assert_array_equal(eps, [4, 1])


def test_rendered_epsilon_is_area_weighted():
    # Box edge halfway through the cell centered at x = 1.
    shapes = [grid.box((0, 0), (2, 100), 3.0)]
    g = grid.YeeGrid((8, 4, 1), 1, origin=(-4, -2, 0), shapes=shapes)
    eps_y = g.epsilon[1]
    # Ey sits on the grid points along x.
    np.testing.assert_allclose(eps_y[4, :, 0], 3.0)
    np.testing.assert_allclose(eps_y[5, :, 0], 2.0)
    np.testing.assert_allclose(eps_y[6, :, 0], 1.0)
    assert g.epsilon is g.epsilon


def test_rotated_slab():
    slab = grid.rotated_slab((0, 0), 0.5, np.pi / 4, 12.0, length=10)
    g = grid.YeeGrid((4, 4, 1), 1, shapes=[slab])
    eps = g.permittivity_at(np.array([[1, 1, 0], [1, -1, 0]]))
    np.testing.assert_array_equal(eps, [12, 1])
