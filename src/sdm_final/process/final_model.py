from __future__ import annotations

from dataclasses import dataclass, field
from multiprocessing import Pool, cpu_count
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

import pandas as pd
from rasterio.errors import RasterioError

from ..errors import FinalModelError
from ..export.writers import render_stack, write_metadata, write_session_info, write_stack, write_table
from ..ingest.partitions import collect_partition_files, load_partition_grids, partition_key, partitions_dir
from ..ingest.statistics import (
	algorithm_statistics,
	collect_evaluation_files,
	load_statistics,
	match_partition_rows,
	resolve_algorithms,
)
from .aggregate import FinalModelConfig, PartitionSet, aggregate
from .summarize import summarize

LOG = logging.getLogger(__name__)

MODELS_DIR = "./models"
FINAL_DIR = "final_models"
PROJ_DIR = "present"


@dataclass
class AlgorithmResult:
	algorithm: str
	layers: List[str] = field(default_factory=list)
	files: List[Path] = field(default_factory=list)
	error: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.error is None


@dataclass
class FinalModelResult:
	statistics: pd.DataFrame
	mean_statistics: pd.DataFrame
	algorithms: List[AlgorithmResult]
	final_folder: Path


def final_folder_path(
	models_dir: Path,
	species_name: str,
	proj_dir: str = PROJ_DIR,
	final_dir: str = FINAL_DIR,
) -> Path:
	return Path(models_dir) / species_name / proj_dir / final_dir


def _process_algorithm(
	task: Tuple[str, str, pd.DataFrame, str, str, FinalModelConfig, Optional[Tuple[float, ...]]]
) -> AlgorithmResult:
	species_name, algorithm, algo_stats, part_dir_str, final_folder_str, config, weights = task
	label = f"{species_name} {algorithm}"
	result = AlgorithmResult(algorithm=algorithm)
	LOG.info("Extracting data for %s", label)

	try:
		paths = collect_partition_files(Path(part_dir_str), algorithm)
		algo_stats = match_partition_rows(algo_stats, [partition_key(path) for path in paths], label)
		grids = load_partition_grids(paths)
		partitions = PartitionSet.from_statistics(
			species_name, algorithm, grids, algo_stats, config.threshold_method
		)
		stack, _ = aggregate(partitions, weights, config)
	except (FinalModelError, ValueError, OSError, RasterioError) as exc:
		LOG.error("Final models for %s failed: %s", label, exc)
		result.error = str(exc)
		return result

	if len(stack) == 0:
		return result

	final_folder = Path(final_folder_str)
	result.layers = stack.names
	result.files = write_stack(stack, final_folder, species_name, algorithm)
	if config.png_final:
		result.files.extend(render_stack(stack, final_folder, species_name, algorithm))
	LOG.info("Selected final models for %s DONE", label)
	return result


def final_model(
	species_name: str,
	algorithms: Optional[Sequence[str]] = None,
	config: Optional[FinalModelConfig] = None,
	models_dir: Path = Path(MODELS_DIR),
	final_dir: str = FINAL_DIR,
	proj_dir: str = PROJ_DIR,
	weights: Optional[Sequence[float]] = None,
	processes: int = 1,
	xlsx: bool = False,
) -> FinalModelResult:
	"""Join the partition models of a species into final models per algorithm.

	Parameters
	----------
	species_name : str
		Species folder under ``models_dir``.
	algorithms : sequence of str, optional
		Algorithms to process; all algorithms in the evaluation files when omitted.
	config : FinalModelConfig, optional
		Final model options.
	models_dir : Path
		Root directory holding ``<species>/<proj_dir>/partitions``.
	final_dir : str
		Name of the output subfolder created next to ``partitions``.
	proj_dir : str
		Projection subfolder the partition rasters are read from. Evaluation
		files are always read from ``present``.
	weights : sequence of float, optional
		Partition weights applied to every algorithm, uniform when omitted.
	processes : int
		Worker processes used across algorithms; 1 runs sequentially.
	xlsx : bool
		Also write the mean statistics as an Excel workbook.

	Returns
	-------
	FinalModelResult
		Statistics tables, one result per algorithm and the output folder.
	"""
	config = config or FinalModelConfig()
	models_dir = Path(models_dir)
	final_folder = final_folder_path(models_dir, species_name, proj_dir, final_dir)
	final_folder.mkdir(parents=True, exist_ok=True)
	LOG.info("Building final models for %s in %s", species_name, proj_dir)

	stats = load_statistics(collect_evaluation_files(models_dir, species_name))
	algorithms = resolve_algorithms(stats, algorithms)
	missing = [algo for algo in algorithms if algo not in set(stats["algorithm"])]
	if missing:
		LOG.warning("Algorithms without evaluation rows for %s: %s", species_name, ", ".join(missing))

	stat_algos = stats[stats["algorithm"].isin(algorithms)].reset_index(drop=True)
	write_table(stat_algos, final_folder / f"{species_name}_final_statistics.csv")
	mean_stats = summarize(stat_algos)
	write_table(mean_stats, final_folder / f"{species_name}_mean_statistics.csv")
	if xlsx:
		write_table(mean_stats, final_folder / f"{species_name}_mean_statistics.xlsx")

	part_dir = partitions_dir(models_dir, species_name, proj_dir)
	weight_tuple = tuple(weights) if weights is not None else None
	tasks = [
		(
			species_name,
			algo,
			algorithm_statistics(stats, algo),
			str(part_dir),
			str(final_folder),
			config,
			weight_tuple,
		)
		for algo in algorithms
	]
	LOG.info("Final models to keep: %s", ", ".join(config.retained_layers))

	processes = max(1, min(processes, len(tasks), cpu_count() or 1))
	if processes > 1:
		with Pool(processes=processes) as pool:
			results = pool.map(_process_algorithm, tasks)
	else:
		results = [_process_algorithm(task) for task in tasks]

	failed = [result.algorithm for result in results if not result.ok]
	if failed:
		LOG.warning("Final models failed for %s: %s", species_name, ", ".join(failed))

	write_metadata(final_folder, species_name, algorithms, config)
	write_session_info(final_folder)
	LOG.info("DONE %s!", species_name)

	return FinalModelResult(
		statistics=stats,
		mean_statistics=mean_stats,
		algorithms=results,
		final_folder=final_folder,
	)
