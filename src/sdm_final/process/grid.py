from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from affine import Affine
from rasterio.crs import CRS

from ..errors import ShapeMismatchError

_TRANSFORM_TOL = 1e-6

Operand = Union["Grid", float, int]


@dataclass(frozen=True)
class GridRef:
	"""Spatial reference shared by every grid of one run."""

	width: int
	height: int
	transform: Affine = field(default_factory=Affine.identity)
	crs: Optional[CRS] = None

	@property
	def shape(self) -> Tuple[int, int]:
		return self.height, self.width

	def matches(self, other: GridRef) -> bool:
		if self.shape != other.shape:
			return False
		if not self.transform.almost_equals(other.transform, precision=_TRANSFORM_TOL):
			return False
		return self.crs == other.crs


def check_aligned(refs: Iterable[GridRef]) -> Optional[GridRef]:
	"""Return the common reference of ``refs`` or raise ShapeMismatchError."""
	first: Optional[GridRef] = None
	for index, ref in enumerate(refs):
		if first is None:
			first = ref
			continue
		if not first.matches(ref):
			raise ShapeMismatchError(
				f"Grid {index} is not aligned with grid 0: "
				f"{ref.shape} {tuple(ref.transform)[:6]} vs {first.shape} {tuple(first.transform)[:6]}"
			)
	return first


class Grid:
	"""Immutable 2-D float raster; NoData cells are stored as NaN."""

	__slots__ = ("_data", "_ref")

	def __init__(self, data: np.ndarray, ref: Optional[GridRef] = None) -> None:
		array = np.array(data, dtype=float, copy=True)
		if array.ndim != 2:
			raise ValueError(f"Grid data must be 2-D, got {array.ndim} dimension(s).")
		if ref is None:
			ref = GridRef(width=array.shape[1], height=array.shape[0])
		elif ref.shape != array.shape:
			raise ShapeMismatchError(f"Grid data shape {array.shape} does not match reference {ref.shape}.")
		array.setflags(write=False)
		self._data = array
		self._ref = ref

	@property
	def data(self) -> np.ndarray:
		return self._data

	@property
	def ref(self) -> GridRef:
		return self._ref

	@property
	def shape(self) -> Tuple[int, int]:
		return self._ref.shape

	@property
	def valid(self) -> np.ndarray:
		return ~np.isnan(self._data)

	def _with(self, data: np.ndarray) -> Grid:
		return Grid(data, self._ref)

	def _operand(self, other: Operand):
		if isinstance(other, Grid):
			check_aligned((self._ref, other._ref))
			return other._data
		return float(other)

	def __add__(self, other: Operand) -> Grid:
		return self._with(self._data + self._operand(other))

	def __sub__(self, other: Operand) -> Grid:
		return self._with(self._data - self._operand(other))

	def __mul__(self, other: Operand) -> Grid:
		return self._with(self._data * self._operand(other))

	def __truediv__(self, other: Operand) -> Grid:
		with np.errstate(divide="ignore", invalid="ignore"):
			return self._with(self._data / self._operand(other))

	__radd__ = __add__
	__rmul__ = __mul__

	def __gt__(self, other: Operand) -> Grid:
		"""Cell-wise ``>`` as a 0/1 grid; NoData stays NoData."""
		value = self._operand(other)
		with np.errstate(invalid="ignore"):
			hits = (self._data > value).astype(float)
		missing = np.isnan(self._data) | np.isnan(value)
		hits[missing] = np.nan
		return self._with(hits)

	def min(self) -> float:
		values = self._data[self.valid]
		return float(values.min()) if values.size else float("nan")

	def max(self) -> float:
		values = self._data[self.valid]
		return float(values.max()) if values.size else float("nan")

	def mean(self) -> float:
		values = self._data[self.valid]
		return float(values.mean()) if values.size else float("nan")

	def equals(self, other: Grid) -> bool:
		return self._ref.matches(other._ref) and np.array_equal(self._data, other._data, equal_nan=True)

	def __repr__(self) -> str:
		return f"Grid(shape={self.shape}, valid={int(self.valid.sum())})"


def weighted_mean(grids: Sequence[Grid], weights: Sequence[float]) -> Grid:
	"""Cell-wise ``sum(w * g) / sum(w)`` skipping NoData per cell.

	Cells that are NoData in every grid, or whose remaining weights sum to
	zero, are NoData in the result.
	"""
	if not grids:
		raise ValueError("weighted_mean needs at least one grid.")
	if len(grids) != len(weights):
		raise ValueError(f"Got {len(grids)} grids but {len(weights)} weights.")
	ref = check_aligned(grid.ref for grid in grids)

	cube = np.stack([grid.data for grid in grids])
	w = np.asarray(weights, dtype=float).reshape(-1, 1, 1)
	valid = ~np.isnan(cube)
	numerator = np.where(valid, cube * w, 0.0).sum(axis=0)
	denominator = np.where(valid, w, 0.0).sum(axis=0)
	with np.errstate(divide="ignore", invalid="ignore"):
		result = np.where(denominator > 0, numerator / denominator, np.nan)
	return Grid(result, ref)


def cell_range(grids: Sequence[Grid]) -> Grid:
	"""Cell-wise ``max - min`` across ``grids`` ignoring NoData."""
	if not grids:
		raise ValueError("cell_range needs at least one grid.")
	ref = check_aligned(grid.ref for grid in grids)

	cube = np.stack([grid.data for grid in grids])
	valid = ~np.isnan(cube)
	hi = np.where(valid, cube, -np.inf).max(axis=0)
	lo = np.where(valid, cube, np.inf).min(axis=0)
	result = np.where(valid.any(axis=0), hi - lo, np.nan)
	return Grid(result, ref)


class GridStack:
	"""Ordered, name-unique collection of co-registered grids.

	Stacks are never modified in place: ``append`` and ``select`` return new
	stacks.
	"""

	__slots__ = ("_layers", "_ref")

	def __init__(self, layers: Optional[Iterable[Tuple[str, Grid]]] = None) -> None:
		self._layers: Dict[str, Grid] = {}
		self._ref: Optional[GridRef] = None
		for name, grid in layers or []:
			self._add(name, grid)

	def _add(self, name: str, grid: Grid) -> None:
		if name in self._layers:
			raise ValueError(f"Layer '{name}' already exists in the stack.")
		if self._ref is None:
			self._ref = grid.ref
		else:
			check_aligned((self._ref, grid.ref))
		self._layers[name] = grid

	def append(self, name: str, grid: Grid) -> GridStack:
		stack = GridStack(self._layers.items())
		stack._add(name, grid)
		return stack

	def select(self, names: Iterable[str]) -> GridStack:
		"""Sub-stack of ``names``, kept in this stack's order."""
		wanted = set(names)
		missing = wanted.difference(self._layers)
		if missing:
			raise KeyError(f"Layers not in stack: {', '.join(sorted(missing))}")
		return GridStack((name, grid) for name, grid in self._layers.items() if name in wanted)

	def map(self, func) -> GridStack:
		return GridStack((name, func(grid)) for name, grid in self._layers.items())

	@property
	def names(self) -> List[str]:
		return list(self._layers)

	@property
	def ref(self) -> Optional[GridRef]:
		return self._ref

	def items(self):
		return self._layers.items()

	def __getitem__(self, name: str) -> Grid:
		return self._layers[name]

	def __contains__(self, name: object) -> bool:
		return name in self._layers

	def __iter__(self) -> Iterator[str]:
		return iter(self._layers)

	def __len__(self) -> int:
		return len(self._layers)

	def __repr__(self) -> str:
		return f"GridStack({self.names})"
