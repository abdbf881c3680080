from __future__ import annotations

import numpy as np

from .grid import Grid, GridStack


def rescale_grid(grid: Grid) -> Grid:
	"""Min-max normalise ``grid`` into [0, 1] over its valid cells.

	A constant grid becomes all zero. A grid without valid cells is returned
	as is.
	"""
	lo = grid.min()
	hi = grid.max()
	if np.isnan(lo) or np.isnan(hi):
		return grid
	if hi == lo:
		return grid * 0.0
	return (grid - lo) / (hi - lo)


def rescale(stack: GridStack) -> GridStack:
	"""Rescale every layer of ``stack`` independently."""
	return stack.map(rescale_grid)
