from __future__ import annotations

from typing import List, Optional, Tuple
from pathlib import Path
import logging
import math
import re

import numpy as np
import rasterio

from ..process.grid import Grid, GridRef, check_aligned

LOG = logging.getLogger(__name__)

PARTITIONS_DIR = "partitions"
_TIF_EXTENSIONS = {".tif", ".tiff"}
_RUN_PARTITION = re.compile(r"_(\d+)_(\d+)$")
_TRAILING_NUMBER = re.compile(r"(\d+)$")


def partitions_dir(models_dir: Path, species_name: str, proj_dir: str = "present") -> Path:
	return Path(models_dir) / species_name / proj_dir / PARTITIONS_DIR


def partition_key(path: Path) -> Optional[Tuple[int, int]]:
	"""(run, partition) parsed from a ``..._<run>_<partition>.tif`` name."""
	match = _RUN_PARTITION.search(Path(path).stem)
	if match:
		return int(match.group(1)), int(match.group(2))
	return None


def _partition_sort_key(path: Path) -> Tuple[int, int, int, str]:
	key = partition_key(path)
	if key is not None:
		return 0, key[0], key[1], path.name.lower()
	match = _TRAILING_NUMBER.search(path.stem)
	if match:
		return 1, 0, int(match.group(1)), path.name.lower()
	return 2, 0, 0, path.name.lower()


def collect_partition_files(part_dir: Path, algorithm: str) -> List[Path]:
	"""Continuous partition rasters ``<algorithm>_cont_*.tif`` in partition order."""
	part_dir = Path(part_dir)
	if not part_dir.exists():
		raise FileNotFoundError(f"Partitions directory not found: {part_dir}")
	if not part_dir.is_dir():
		raise NotADirectoryError(f"Partitions path is not a directory: {part_dir}")

	prefix = f"{algorithm}_cont_"
	paths = [
		p for p in part_dir.iterdir()
		if p.is_file() and p.name.startswith(prefix) and p.suffix.lower() in _TIF_EXTENSIONS
	]
	return sorted(paths, key=_partition_sort_key)


def _nodata_mask(data: np.ndarray, nodata: Optional[float]) -> np.ndarray:
	mask = np.isnan(data)
	if nodata is None:
		return mask
	try:
		numeric = float(nodata)
	except (TypeError, ValueError):
		return mask
	if math.isnan(numeric):
		return mask
	return mask | np.isclose(data, numeric)


def read_grid(path: Path) -> Grid:
	"""Read band 1 of a single-band raster as a Grid with NoData as NaN."""
	path = Path(path)
	if not path.exists():
		raise FileNotFoundError(f"Raster not found: {path}")

	with rasterio.open(path) as src:
		if src.count != 1:
			raise ValueError(f"Expected single-band raster, found {src.count} bands in {path}")
		data = src.read(1).astype(float)
		data[_nodata_mask(data, src.nodata)] = np.nan
		ref = GridRef(width=src.width, height=src.height, transform=src.transform, crs=src.crs)

	return Grid(data, ref)


def load_partition_grids(paths: List[Path]) -> List[Grid]:
	"""Read partition rasters and check they share one spatial reference."""
	grids = []
	for index, path in enumerate(paths, start=1):
		LOG.info("Reading partition model %d/%d from %s.", index, len(paths), path)
		grids.append(read_grid(path))
	check_aligned(grid.ref for grid in grids)
	return grids
