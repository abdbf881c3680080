from __future__ import annotations

from datetime import datetime
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import List, Sequence
import logging
import platform
import sys

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import rasterio
from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from ..process.aggregate import BIN_CONSENSUS, FinalModelConfig
from ..process.grid import Grid, GridStack

LOG = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.csv"
SESSION_INFO_FILENAME = "session_info.txt"
NOT_APPLICABLE = "not applicable"

_DEFAULT_NODATA = -9999.0
_GTIFF_SUFFIX = ".tif"
_PNG_SUFFIX = ".png"
_SESSION_PACKAGES = ("numpy", "pandas", "rasterio", "affine", "matplotlib", "openpyxl")


def _write_geotiff(grid: Grid, destination: Path) -> Path:
	data = np.where(grid.valid, grid.data, _DEFAULT_NODATA).astype(np.float32)
	with rasterio.open(
		destination,
		"w",
		driver="GTiff",
		width=grid.ref.width,
		height=grid.ref.height,
		count=1,
		dtype=data.dtype,
		crs=grid.ref.crs,
		transform=grid.ref.transform,
		nodata=_DEFAULT_NODATA,
	) as dst:
		dst.write(data, 1)
	return destination


def write_stack(stack: GridStack, final_folder: Path, species_name: str, algorithm: str) -> List[Path]:
	"""Write each layer of ``stack`` as a GeoTIFF.

	A single layer is written as ``<species>_<algorithm>_<layer>.tif``.
	Several layers share the base name ``<species>_<algorithm>`` and each
	file gets the layer name as suffix.
	"""
	final_folder = Path(final_folder)
	final_folder.mkdir(parents=True, exist_ok=True)
	if len(stack) == 0:
		return []

	LOG.info("Writing models %s", algorithm)
	if len(stack) == 1:
		name = stack.names[0]
		filename = final_folder / f"{species_name}_{algorithm}_{name}{_GTIFF_SUFFIX}"
		return [_write_geotiff(stack[name], filename)]

	base = final_folder / f"{species_name}_{algorithm}"
	return [
		_write_geotiff(grid, base.with_name(f"{base.name}_{name}{_GTIFF_SUFFIX}"))
		for name, grid in stack.items()
	]


def render_png(grid: Grid, title: str, output_path: Path) -> Path:
	"""Render ``grid`` with a colour bar and ``title``."""
	left, right, bottom, top = _extent(grid)
	fig, ax = plt.subplots(figsize=(6, 5))
	image = ax.imshow(
		np.ma.masked_invalid(grid.data),
		extent=(left, right, bottom, top),
		origin="upper",
		cmap="viridis",
		interpolation="nearest",
	)
	fig.colorbar(image, ax=ax, shrink=0.8)
	ax.set_title(title)

	output_path.parent.mkdir(parents=True, exist_ok=True)
	fig.tight_layout()
	fig.savefig(output_path, dpi=150)
	plt.close(fig)
	return output_path


def _extent(grid: Grid):
	transform = grid.ref.transform
	x0, y0 = transform * (0, 0)
	x1, y1 = transform * (grid.ref.width, grid.ref.height)
	return min(x0, x1), max(x0, x1), min(y0, y1), max(y0, y1)


def render_stack(stack: GridStack, final_folder: Path, species_name: str, algorithm: str) -> List[Path]:
	return [
		render_png(grid, name, Path(final_folder) / f"{species_name}_{algorithm}_{name}{_PNG_SUFFIX}")
		for name, grid in stack.items()
	]


def build_metadata(species_name: str, algorithms: Sequence[str], config: FinalModelConfig) -> pd.DataFrame:
	if BIN_CONSENSUS in config.which_models and config.consensus_level is not None:
		consensus_level = config.consensus_level
	else:
		consensus_level = NOT_APPLICABLE
	return pd.DataFrame(
		[
			{
				"species_name": species_name,
				"algorithms": "-".join(algorithms),
				"scale_models": "yes" if config.scale_models else "no",
				"consensus_level": consensus_level,
				"which_models": "-".join(config.which_models),
				"mean_th_par": config.threshold_method or "no",
				"uncertainty": "yes" if config.uncertainty else "no",
			}
		]
	)


def write_metadata(
	final_folder: Path,
	species_name: str,
	algorithms: Sequence[str],
	config: FinalModelConfig,
) -> Path:
	LOG.info("Writing metadata")
	destination = Path(final_folder) / METADATA_FILENAME
	build_metadata(species_name, algorithms, config).to_csv(destination, index=False)
	return destination


def write_table(table: pd.DataFrame, destination: Path) -> Path:
	"""Write ``table`` as CSV or, for an ``.xlsx`` destination, as a workbook."""
	destination = Path(destination)
	destination.parent.mkdir(parents=True, exist_ok=True)
	if destination.suffix.lower() != ".xlsx":
		table.to_csv(destination, index=False)
		return destination

	workbook = Workbook()
	sheet = workbook.active
	sheet.title = destination.stem[:31]
	sheet.append([str(column) for column in table.columns])
	for row in table.itertuples(index=False):
		sheet.append([_cell_value(value) for value in row])
	for idx, column in enumerate(table.columns, start=1):
		sheet.column_dimensions[get_column_letter(idx)].width = max(len(str(column)) + 2, 12)
	workbook.save(destination)
	return destination


def _cell_value(value):
	if isinstance(value, (np.floating, float)):
		if not np.isfinite(value):
			return None
		return round(float(value), 6)
	if isinstance(value, np.integer):
		return int(value)
	return value


def write_session_info(final_folder: Path) -> Path:
	lines = [
		f"date: {datetime.now().isoformat(timespec='seconds')}",
		f"python: {sys.version.split()[0]}",
		f"platform: {platform.platform()}",
	]
	for package in _SESSION_PACKAGES:
		try:
			version = importlib_metadata.version(package)
		except importlib_metadata.PackageNotFoundError:
			version = "not installed"
		lines.append(f"{package}: {version}")

	destination = Path(final_folder) / SESSION_INFO_FILENAME
	destination.write_text("\n".join(lines) + "\n", encoding="utf-8")
	return destination
