from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin

from sdm_final.process.grid import Grid, GridRef

NODATA = -9999.0
CELLSIZE = 0.5


def make_ref(shape=(1, 2)) -> GridRef:
	height, width = shape
	return GridRef(
		width=width,
		height=height,
		transform=from_origin(10.0, 50.0, CELLSIZE, CELLSIZE),
		crs=CRS.from_epsg(4326),
	)


def make_grid(values: Sequence, ref: GridRef = None) -> Grid:
	array = np.asarray(values, dtype=float)
	if array.ndim == 1:
		array = array.reshape(1, -1)
	return Grid(array, ref or make_ref(array.shape))


def write_tif(path: Path, values: Sequence, origin=(10.0, 50.0), nodata: float = NODATA) -> Path:
	array = np.asarray(values, dtype=np.float32)
	if array.ndim == 1:
		array = array.reshape(1, -1)
	array = np.where(np.isnan(array), nodata, array).astype(np.float32)
	path.parent.mkdir(parents=True, exist_ok=True)
	with rasterio.open(
		path,
		"w",
		driver="GTiff",
		width=array.shape[1],
		height=array.shape[0],
		count=1,
		dtype=array.dtype,
		crs=CRS.from_epsg(4326),
		transform=from_origin(origin[0], origin[1], CELLSIZE, CELLSIZE),
		nodata=nodata,
	) as dst:
		dst.write(array, 1)
	return path


def write_evaluation(path: Path, rows: List[Dict]) -> Path:
	path.parent.mkdir(parents=True, exist_ok=True)
	pd.DataFrame(rows).to_csv(path)
	return path


def eval_row(species: str, algorithm: str, partition: int, spec_sens: float, **extra) -> Dict:
	row = {
		"species_name": species,
		"algorithm": algorithm,
		"run": 1,
		"partition": partition,
		"dismo_threshold": "spec_sens",
		"spec_sens": spec_sens,
		"kappa": 0.4,
		"AUC": 0.8 + partition / 100.0,
		"TSSmax": 0.5,
	}
	row.update(extra)
	return row


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
	"""Species ``sp1`` with three aligned ``bioclim`` partitions and two misaligned ``rf`` partitions."""
	root = tmp_path / "models"
	part_dir = root / "sp1" / "present" / "partitions"

	bioclim = [[0.1, 0.6], [0.3, 0.8], [0.5, 1.0]]
	for idx, values in enumerate(bioclim, start=1):
		write_tif(part_dir / f"bioclim_cont_sp1_1_{idx}.tif", values)
		write_evaluation(
			part_dir / f"evaluate_sp1_{idx}_bioclim.csv",
			[eval_row("sp1", "bioclim", idx, 0.2)],
		)

	write_tif(part_dir / "rf_cont_sp1_1_1.tif", [0.2, 0.4])
	write_tif(part_dir / "rf_cont_sp1_1_2.tif", [0.2, 0.4], origin=(11.0, 50.0))
	for idx in (1, 2):
		write_evaluation(
			part_dir / f"evaluate_sp1_{idx}_rf.csv",
			[eval_row("sp1", "rf", idx, 0.3)],
		)
	return root
