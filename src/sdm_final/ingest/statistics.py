from __future__ import annotations

from typing import List, Optional, Sequence, Tuple
from pathlib import Path
import logging

import pandas as pd

from .partitions import partitions_dir

LOG = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("species_name", "algorithm")
PARTITION_ORDER_COLUMNS = ("run", "partition")
_EVALUATION_PATTERN = "evaluate*.csv"


def collect_evaluation_files(models_dir: Path, species_name: str) -> List[Path]:
	"""Evaluation tables written for every partition of ``species_name``."""
	eval_dir = partitions_dir(models_dir, species_name, "present")
	if not eval_dir.exists():
		raise FileNotFoundError(f"Evaluation directory not found: {eval_dir}")
	if not eval_dir.is_dir():
		raise NotADirectoryError(f"Evaluation path is not a directory: {eval_dir}")

	paths = sorted(p for p in eval_dir.glob(_EVALUATION_PATTERN) if p.is_file())
	if not paths:
		raise FileNotFoundError(f"No evaluation files matching '{_EVALUATION_PATTERN}' in {eval_dir}")
	return paths


def load_statistics(paths: Sequence[Path]) -> pd.DataFrame:
	"""Concatenate evaluation tables; the first column of each is a row label."""
	frames = []
	for path in paths:
		try:
			frames.append(pd.read_csv(path, index_col=0))
		except pd.errors.EmptyDataError as exc:
			raise ValueError(f"Evaluation file is empty: {path}") from exc
	if not frames:
		raise ValueError("No evaluation tables were provided.")

	stats = pd.concat(frames, ignore_index=True)
	missing = [column for column in REQUIRED_COLUMNS if column not in stats.columns]
	if missing:
		raise ValueError(f"Evaluation tables are missing required columns: {', '.join(missing)}")

	LOG.info("Read %d evaluation row(s) from %d file(s).", len(stats), len(paths))
	return stats


def resolve_algorithms(stats: pd.DataFrame, algorithms: Optional[Sequence[str]] = None) -> List[str]:
	if algorithms:
		return list(dict.fromkeys(algorithms))
	return [str(algo) for algo in pd.unique(stats["algorithm"])]


def algorithm_statistics(stats: pd.DataFrame, algorithm: str) -> pd.DataFrame:
	"""Rows of one algorithm, one per partition, in partition order."""
	rows = stats[stats["algorithm"] == algorithm]
	order = [column for column in PARTITION_ORDER_COLUMNS if column in rows.columns]
	if order:
		rows = rows.sort_values(order, kind="stable")
	return rows.reset_index(drop=True)


def match_partition_rows(
	rows: pd.DataFrame,
	keys: Sequence[Optional[Tuple[int, int]]],
	label: str = "",
) -> pd.DataFrame:
	"""Reorder ``rows`` so row ``i`` belongs to the raster with ``keys[i]``.

	Rows are matched on their (run, partition) columns when every raster
	name carries such a key; otherwise they are paired by position.
	"""
	if len(keys) != len(rows):
		raise ValueError(
			f"{label}: found {len(keys)} partition raster(s) but {len(rows)} evaluation row(s)."
		)
	if not keys or any(key is None for key in keys) or not set(PARTITION_ORDER_COLUMNS) <= set(rows.columns):
		return rows.reset_index(drop=True)

	positions = {}
	for position, (run, partition) in enumerate(zip(rows["run"], rows["partition"])):
		row_key = (int(run), int(partition))
		if row_key in positions:
			raise ValueError(f"{label}: duplicate evaluation rows for run {row_key[0]} partition {row_key[1]}.")
		positions[row_key] = position

	missing = [key for key in keys if key not in positions]
	if missing:
		names = ", ".join(f"run {run} partition {partition}" for run, partition in missing)
		raise ValueError(f"{label}: no evaluation rows for {names}.")
	return rows.iloc[[positions[key] for key in keys]].reset_index(drop=True)
