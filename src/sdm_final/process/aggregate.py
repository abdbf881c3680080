from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple
import logging
import warnings

import numpy as np
import pandas as pd

from ..errors import ConfigurationError, EmptyPartitionWarning, SinglePartitionWarning
from .grid import Grid, GridStack, cell_range, check_aligned, weighted_mean
from .rescale import rescale

LOG = logging.getLogger(__name__)

RAW_MEAN = "raw_mean"
RAW_MEAN_TH = "raw_mean_th"
RAW_MEAN_CUT = "raw_mean_cut"
BIN_MEAN = "bin_mean"
BIN_CONSENSUS = "bin_consensus"
RAW_UNCERTAINTY = "raw_uncertainty"

MODEL_TYPES: Tuple[str, ...] = (RAW_MEAN, RAW_MEAN_TH, RAW_MEAN_CUT, BIN_MEAN, BIN_CONSENSUS)
DEFAULT_THRESHOLD_METHOD = "spec_sens"


@dataclass(frozen=True)
class FinalModelConfig:
	"""Options controlling which final models are built and how.

	Attributes
	----------
	which_models : tuple[str, ...]
		Final model types to keep, any of ``MODEL_TYPES``.
	threshold_method : str
		Statistics column holding the per-partition thresholds.
	consensus_level : float, optional
		Share of binary partitions that must agree for ``bin_consensus``.
	scale_models : bool
		Min-max rescale the final models (never the uncertainty layer).
	uncertainty : bool
		Append the ``raw_uncertainty`` range layer.
	png_final : bool
		Render one PNG per written layer.
	"""

	which_models: Tuple[str, ...] = (RAW_MEAN,)
	threshold_method: str = DEFAULT_THRESHOLD_METHOD
	consensus_level: Optional[float] = 0.5
	scale_models: bool = True
	uncertainty: bool = False
	png_final: bool = True

	def __post_init__(self) -> None:
		models = tuple(dict.fromkeys(self.which_models))
		unknown = [name for name in models if name not in MODEL_TYPES]
		if unknown:
			raise ConfigurationError(
				f"Unknown model type(s): {', '.join(unknown)}. Expected any of {', '.join(MODEL_TYPES)}."
			)
		if not models:
			raise ConfigurationError("which_models must name at least one model type.")
		object.__setattr__(self, "which_models", models)

		if self.consensus_level is not None:
			level = float(self.consensus_level)
			if not 0.0 < level <= 1.0:
				raise ConfigurationError(f"consensus_level must be in (0, 1], got {level}.")
			object.__setattr__(self, "consensus_level", level)

	@property
	def retained_layers(self) -> List[str]:
		names = [name for name in MODEL_TYPES if name in self.which_models]
		if self.uncertainty:
			names.append(RAW_UNCERTAINTY)
		return names


@dataclass(frozen=True)
class PartitionSet:
	"""Continuous partition grids of one (species, algorithm) and their thresholds."""

	species: str
	algorithm: str
	grids: Tuple[Grid, ...] = field(default_factory=tuple)
	thresholds: Tuple[float, ...] = field(default_factory=tuple)

	def __post_init__(self) -> None:
		grids = tuple(self.grids)
		thresholds = tuple(float(t) for t in self.thresholds)
		if len(grids) != len(thresholds):
			raise ValueError(
				f"{self.species} {self.algorithm}: {len(grids)} partition grids "
				f"but {len(thresholds)} thresholds."
			)
		bad = [index for index, value in enumerate(thresholds) if not np.isfinite(value)]
		if bad:
			raise ValueError(
				f"{self.species} {self.algorithm}: missing or non-finite threshold for partition(s) "
				f"{', '.join(str(index + 1) for index in bad)}."
			)
		check_aligned(grid.ref for grid in grids)
		object.__setattr__(self, "grids", grids)
		object.__setattr__(self, "thresholds", thresholds)

	@classmethod
	def from_statistics(
		cls,
		species: str,
		algorithm: str,
		grids: Sequence[Grid],
		stats: pd.DataFrame,
		threshold_method: str = DEFAULT_THRESHOLD_METHOD,
	) -> PartitionSet:
		"""Pair ``grids`` with the ``threshold_method`` column of ``stats``.

		``stats`` holds one row per partition of ``algorithm``, already matched
		to ``grids`` row for grid.
		"""
		if threshold_method not in stats.columns:
			raise ConfigurationError(
				f"Threshold method '{threshold_method}' is not a column of the statistics table."
			)
		thresholds = pd.to_numeric(stats[threshold_method], errors="raise").astype(float)
		return cls(species, algorithm, tuple(grids), tuple(thresholds.tolist()))

	def __len__(self) -> int:
		return len(self.grids)


def _resolve_weights(weights: Optional[Sequence[float]], count: int) -> np.ndarray:
	if weights is None:
		return np.ones(count, dtype=float)
	applied = np.asarray(weights, dtype=float).ravel()
	if applied.size != count:
		raise ConfigurationError(f"Expected {count} weights, got {applied.size}.")
	if np.any(~np.isfinite(applied)) or np.any(applied < 0):
		raise ConfigurationError("Weights must be finite and non-negative.")
	if applied.sum() <= 0:
		raise ConfigurationError("Weights must not sum to zero.")
	return applied


@dataclass
class _Context:
	partitions: PartitionSet
	weights: np.ndarray
	config: FinalModelConfig
	layers: Dict[str, Grid] = field(default_factory=dict)


def _raw_mean(ctx: _Context) -> Grid:
	grids = ctx.partitions.grids
	if len(grids) == 1:
		return grids[0]
	return weighted_mean(grids, ctx.weights)


def _raw_mean_th(ctx: _Context) -> Grid:
	threshold = float(np.mean(ctx.partitions.thresholds))
	LOG.debug("Mean %s threshold: %.6f", ctx.config.threshold_method, threshold)
	return ctx.layers[RAW_MEAN] > threshold


def _raw_mean_cut(ctx: _Context) -> Grid:
	return ctx.layers[RAW_MEAN] * ctx.layers[RAW_MEAN_TH]


def _bin_mean(ctx: _Context) -> Grid:
	binary = [grid > threshold for grid, threshold in zip(ctx.partitions.grids, ctx.partitions.thresholds)]
	if len(binary) == 1:
		return binary[0]
	return weighted_mean(binary, ctx.weights)


def _bin_consensus(ctx: _Context) -> Grid:
	if ctx.config.consensus_level is None:
		raise ConfigurationError("bin_consensus requires consensus_level")
	return ctx.layers[BIN_MEAN] > ctx.config.consensus_level


# Canonical evaluation order; each layer lists the layers it reads.
_PIPELINE: Tuple[Tuple[str, Tuple[str, ...], Callable[[_Context], Grid]], ...] = (
	(RAW_MEAN, (), _raw_mean),
	(RAW_MEAN_TH, (RAW_MEAN,), _raw_mean_th),
	(RAW_MEAN_CUT, (RAW_MEAN, RAW_MEAN_TH), _raw_mean_cut),
	(BIN_MEAN, (), _bin_mean),
	(BIN_CONSENSUS, (BIN_MEAN,), _bin_consensus),
)
_DEPENDENCIES = {name: deps for name, deps, _ in _PIPELINE}


def _required_layers(requested: Sequence[str]) -> Set[str]:
	required = {RAW_MEAN}
	pending = list(requested)
	while pending:
		name = pending.pop()
		required.add(name)
		pending.extend(dep for dep in _DEPENDENCIES[name] if dep not in required)
	return required


def aggregate(
	partitions: PartitionSet,
	weights: Optional[Sequence[float]] = None,
	config: Optional[FinalModelConfig] = None,
) -> Tuple[GridStack, np.ndarray]:
	"""Combine the partition grids of one algorithm into final models.

	Parameters
	----------
	partitions : PartitionSet
		Continuous partition grids and their thresholds.
	weights : sequence of float, optional
		One non-negative weight per partition, uniform when omitted.
	config : FinalModelConfig, optional
		Final model options, defaults when omitted.

	Returns
	-------
	tuple[GridStack, numpy.ndarray]
		The selected final models in canonical order (rescaled when
		``config.scale_models``), followed by ``raw_uncertainty`` when
		requested, and the weights that were applied.
	"""
	config = config or FinalModelConfig()
	count = len(partitions)
	label = f"{partitions.species} {partitions.algorithm}"

	if count == 0:
		warnings.warn(f"No partition selected for {label}", EmptyPartitionWarning, stacklevel=2)
		return GridStack(), np.empty(0, dtype=float)

	applied = _resolve_weights(weights, count)
	LOG.info("%d partition(s) will be used for %s", count, label)
	if count == 1:
		warnings.warn(
			f"Only one partition available for {label}: the final models are identical to the original model",
			SinglePartitionWarning,
			stacklevel=2,
		)

	ctx = _Context(partitions, applied, config)
	required = _required_layers(config.which_models)
	for name, _, build in _PIPELINE:
		if name in required:
			ctx.layers[name] = build(ctx)

	stack = GridStack((name, ctx.layers[name]) for name, _, _ in _PIPELINE if name in ctx.layers)
	stack = stack.select(config.which_models)
	if config.scale_models:
		stack = rescale(stack)
	if config.uncertainty:
		stack = stack.append(RAW_UNCERTAINTY, cell_range(partitions.grids))

	LOG.info("Selected final models for %s: %s", label, ", ".join(stack.names))
	return stack, applied
