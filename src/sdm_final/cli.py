from __future__ import annotations

import logging
import argparse
from pathlib import Path
from typing import Optional

from .errors import FinalModelError
from .process import FinalModelConfig, MODEL_TYPES, final_model
from .process.final_model import FINAL_DIR, MODELS_DIR, PROJ_DIR

LOG = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(
		prog="sdm_final",
		description="Join per-partition niche models into final models per algorithm",
	)
	p.add_argument("--species", type=str, nargs="+", required=True, help="Species folder name(s) under the models directory")
	p.add_argument("--models-dir", type=str, default=MODELS_DIR, help="Directory holding <species>/<proj_dir>/partitions")
	p.add_argument("--final-dir", type=str, default=FINAL_DIR, help="Name of the output subfolder")
	p.add_argument("--proj-dir", type=str, default=PROJ_DIR, help="Projection subfolder with the partition rasters")
	p.add_argument("--algorithms", nargs="+", metavar="ALGO", default=None, help="Algorithms to process (default: all in the evaluation files)")
	p.add_argument(
		"--which-models",
		nargs="+",
		choices=MODEL_TYPES,
		default=["raw_mean"],
		help="Final model types to write",
	)
	p.add_argument("--threshold", type=str, default="spec_sens", help="Statistics column used as partition threshold")
	p.add_argument("--consensus-level", type=float, default=0.5, help="Share of binary models that must agree for bin_consensus")
	p.add_argument("--weights", nargs="+", type=float, default=None, help="One weight per partition (default: uniform)")
	p.add_argument("--no-scale", action="store_true", help="Do not rescale final models to [0, 1]")
	p.add_argument("--uncertainty", action="store_true", help="Write the partition range (max - min) layer")
	p.add_argument("--no-png", action="store_true", help="Do not render PNG figures")
	p.add_argument("--xlsx", action="store_true", help="Also write mean statistics as XLSX")
	p.add_argument("--processes", type=int, default=1, help="Worker processes across algorithms")
	return p


def main(argv: Optional[list[str]] = None) -> int:

	logging.basicConfig(
		level=logging.INFO,
		format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
		datefmt="%H:%M:%S",
		force=True,
	)
	logging.captureWarnings(True)

	ns = _build_parser().parse_args(argv)

	try:
		config = FinalModelConfig(
			which_models=tuple(ns.which_models),
			threshold_method=ns.threshold,
			consensus_level=ns.consensus_level,
			scale_models=not ns.no_scale,
			uncertainty=ns.uncertainty,
			png_final=not ns.no_png,
		)
	except FinalModelError as exc:
		LOG.error("%s", exc)
		return 2

	status = 0
	for species_name in ns.species:
		result = final_model(
			species_name,
			algorithms=ns.algorithms,
			config=config,
			models_dir=Path(ns.models_dir),
			final_dir=ns.final_dir,
			proj_dir=ns.proj_dir,
			weights=ns.weights,
			processes=ns.processes,
			xlsx=ns.xlsx,
		)
		if not all(algo.ok for algo in result.algorithms):
			status = 1

	return status

if __name__ == "__main__":
	raise SystemExit(main())
