"""
Tests for reading partition rasters and evaluation tables.

Run with: pytest tests/test_ingest.py -v
"""

import numpy as np
import pandas as pd
import pytest

from conftest import eval_row, write_evaluation, write_tif
from sdm_final.errors import ShapeMismatchError
from sdm_final.ingest.partitions import (
	collect_partition_files,
	load_partition_grids,
	partition_key,
	partitions_dir,
	read_grid,
)
from sdm_final.ingest.statistics import (
	algorithm_statistics,
	collect_evaluation_files,
	load_statistics,
	match_partition_rows,
	resolve_algorithms,
)


class TestPartitionRasters:
	"""Test partition discovery and raster reading."""

	def test_collect_in_partition_order(self, tmp_path):
		for idx in (10, 2, 1):
			write_tif(tmp_path / f"rf_cont_sp1_1_{idx}.tif", [0.1])
		write_tif(tmp_path / "bioclim_cont_sp1_1_1.tif", [0.1])
		write_tif(tmp_path / "rf_bin_sp1_1_1.tif", [0.1])

		paths = collect_partition_files(tmp_path, "rf")
		assert [p.name for p in paths] == [
			"rf_cont_sp1_1_1.tif",
			"rf_cont_sp1_1_2.tif",
			"rf_cont_sp1_1_10.tif",
		]

	def test_collect_orders_runs_before_partitions(self, tmp_path):
		for name in ("glm_cont_sp1_2_1", "glm_cont_sp1_1_2", "glm_cont_sp1_2_2", "glm_cont_sp1_1_1"):
			write_tif(tmp_path / f"{name}.tif", [0.1])

		paths = collect_partition_files(tmp_path, "glm")
		assert [partition_key(p) for p in paths] == [(1, 1), (1, 2), (2, 1), (2, 2)]

	def test_partition_key(self, tmp_path):
		assert partition_key(tmp_path / "rf_cont_sp1_3_12.tif") == (3, 12)
		assert partition_key(tmp_path / "rf_cont_1.tif") is None

	def test_collect_missing_directory(self, tmp_path):
		with pytest.raises(FileNotFoundError):
			collect_partition_files(tmp_path / "missing", "rf")

	def test_read_grid_masks_nodata(self, tmp_path):
		path = write_tif(tmp_path / "grid.tif", [[0.25, np.nan], [0.5, 0.75]])
		grid = read_grid(path)

		assert grid.shape == (2, 2)
		assert grid.ref.crs.to_epsg() == 4326
		assert np.isnan(grid.data[0, 1])
		np.testing.assert_allclose(grid.data[1], [0.5, 0.75])

	def test_load_rejects_misaligned(self, tmp_path):
		a = write_tif(tmp_path / "rf_cont_1.tif", [0.1, 0.2])
		b = write_tif(tmp_path / "rf_cont_2.tif", [0.1, 0.2], origin=(20.0, 50.0))
		with pytest.raises(ShapeMismatchError):
			load_partition_grids([a, b])

	def test_partitions_dir(self, tmp_path):
		assert partitions_dir(tmp_path, "sp1", "future") == tmp_path / "sp1" / "future" / "partitions"


class TestStatistics:
	"""Test evaluation table loading."""

	def test_load(self, models_dir):
		paths = collect_evaluation_files(models_dir, "sp1")
		stats = load_statistics(paths)

		assert len(paths) == 5
		assert len(stats) == 5
		assert "Unnamed: 0" not in stats.columns
		assert set(stats["algorithm"]) == {"bioclim", "rf"}

	def test_no_evaluation_files(self, tmp_path):
		(tmp_path / "sp1" / "present" / "partitions").mkdir(parents=True)
		with pytest.raises(FileNotFoundError):
			collect_evaluation_files(tmp_path, "sp1")

	def test_missing_required_columns(self, tmp_path):
		path = tmp_path / "evaluate_bad.csv"
		pd.DataFrame({"species_name": ["sp1"]}).to_csv(path)
		with pytest.raises(ValueError, match="algorithm"):
			load_statistics([path])

	def test_resolve_algorithms(self):
		stats = pd.DataFrame({"algorithm": ["rf", "rf", "bioclim", "glm"]})
		assert resolve_algorithms(stats) == ["rf", "bioclim", "glm"]
		assert resolve_algorithms(stats, ["glm", "glm"]) == ["glm"]

	def test_algorithm_statistics_in_partition_order(self, tmp_path):
		rows = [eval_row("sp1", "rf", idx, 0.1 * idx) for idx in (3, 1, 2)]
		rows.append(eval_row("sp1", "glm", 1, 0.9))
		path = write_evaluation(tmp_path / "evaluate_all.csv", rows)

		rf = algorithm_statistics(load_statistics([path]), "rf")
		assert list(rf["partition"]) == [1, 2, 3]
		np.testing.assert_allclose(rf["spec_sens"], [0.1, 0.2, 0.3])


class TestMatchPartitionRows:
	"""Test pairing evaluation rows with partition rasters."""

	def _rows(self, keys):
		return pd.DataFrame(
			[eval_row("sp1", "glm", partition, 0.1 * run, run=run) for run, partition in keys]
		)

	def test_rows_follow_raster_keys(self):
		rows = self._rows([(1, 1), (1, 2), (2, 1), (2, 2)])
		matched = match_partition_rows(rows, [(2, 1), (1, 1), (2, 2), (1, 2)], "sp1 glm")
		assert list(zip(matched["run"], matched["partition"])) == [(2, 1), (1, 1), (2, 2), (1, 2)]
		np.testing.assert_allclose(matched["spec_sens"], [0.2, 0.1, 0.2, 0.1])

	def test_positional_without_keys(self):
		rows = self._rows([(1, 2), (1, 1)])
		matched = match_partition_rows(rows, [None, None], "sp1 glm")
		assert list(matched["partition"]) == [2, 1]

	def test_count_mismatch(self):
		with pytest.raises(ValueError, match="2 partition raster"):
			match_partition_rows(self._rows([(1, 1)]), [(1, 1), (1, 2)], "sp1 glm")

	def test_missing_row(self):
		with pytest.raises(ValueError, match="run 2 partition 1"):
			match_partition_rows(self._rows([(1, 1), (1, 2)]), [(1, 1), (2, 1)], "sp1 glm")

	def test_duplicate_rows(self):
		with pytest.raises(ValueError, match="duplicate"):
			match_partition_rows(self._rows([(1, 1), (1, 1)]), [(1, 1), (1, 2)], "sp1 glm")
