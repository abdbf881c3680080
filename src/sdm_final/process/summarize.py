from __future__ import annotations

from typing import List, Sequence, Tuple

import pandas as pd

GROUP_COLUMNS: Tuple[str, ...] = ("species_name", "algorithm", "dismo_threshold")

METRIC_COLUMNS: Tuple[str, ...] = (
	"kappa",
	"spec_sens",
	"no_omission",
	"prevalence",
	"equal_sens_spec",
	"sensitivity",
	"correlation",
	"AUC",
	"AUCratio",
	"pROC",
	"TSSmax",
	"KAPPAmax",
	"prevalence.value",
	"PPP",
	"NPP",
	"TPR",
	"TNR",
	"FPR",
	"FNR",
	"CCR",
	"Kappa",
	"F_score",
	"Jaccard",
)


def metric_columns(stats: pd.DataFrame, metrics: Sequence[str] = METRIC_COLUMNS) -> List[str]:
	return [column for column in metrics if column in stats.columns]


def summarize(
	stats: pd.DataFrame,
	group_columns: Sequence[str] = GROUP_COLUMNS,
	metrics: Sequence[str] = METRIC_COLUMNS,
) -> pd.DataFrame:
	"""Mean of every metric per (species, algorithm, threshold method).

	Missing values are ignored. Groups keep the order in which they first
	appear in ``stats``.
	"""
	group_columns = list(group_columns)
	missing = [column for column in group_columns if column not in stats.columns]
	if missing:
		raise ValueError(f"Statistics table is missing grouping column(s): {', '.join(missing)}")

	columns = metric_columns(stats, metrics)
	values = stats[columns].apply(pd.to_numeric, errors="coerce")
	grouped = pd.concat([stats[group_columns], values], axis=1).groupby(
		group_columns, sort=False, dropna=False
	)
	return grouped[columns].mean().reset_index()
