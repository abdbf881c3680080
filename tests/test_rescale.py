"""
Tests for min-max rescaling of final models.

Run with: pytest tests/test_rescale.py -v
"""

import numpy as np
import pytest

from conftest import make_grid
from sdm_final.process.grid import GridStack
from sdm_final.process.rescale import rescale, rescale_grid


class TestRescale:
	"""Test rescaling bounds, constants and idempotence."""

	def test_bounds(self):
		grid = rescale_grid(make_grid([2.0, 4.0, np.nan, 6.0]))
		assert grid.min() == 0.0
		assert grid.max() == 1.0
		np.testing.assert_allclose(grid.data, [[0.0, 0.5, np.nan, 1.0]])

	def test_constant_grid_becomes_zero(self):
		grid = rescale_grid(make_grid([0.7, 0.7, np.nan]))
		np.testing.assert_array_equal(grid.data, [[0.0, 0.0, np.nan]])

	def test_all_nodata_unchanged(self):
		grid = make_grid([np.nan, np.nan])
		assert rescale_grid(grid) is grid

	def test_idempotent(self):
		rng = np.random.default_rng(11)
		stack = GridStack(
			[
				("a", make_grid(rng.random((3, 3)) * 10 - 2)),
				("b", make_grid(np.where(rng.random((3, 3)) > 0.5, 1.0, 0.0))),
			]
		)
		once = rescale(stack)
		twice = rescale(once)
		for name in once:
			np.testing.assert_allclose(twice[name].data, once[name].data)

	def test_layers_scaled_independently(self):
		stack = GridStack([("a", make_grid([0.0, 10.0])), ("b", make_grid([0.2, 0.4]))])
		scaled = rescale(stack)
		assert scaled.names == ["a", "b"]
		np.testing.assert_allclose(scaled["a"].data, [[0.0, 1.0]])
		np.testing.assert_allclose(scaled["b"].data, [[0.0, 1.0]])
		assert stack["a"].max() == pytest.approx(10.0)
