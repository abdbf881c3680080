"""Join per-partition niche models into final models per species and algorithm."""

__version__ = "0.1.0"

from .errors import (
	ConfigurationError,
	EmptyPartitionWarning,
	FinalModelError,
	ShapeMismatchError,
	SinglePartitionWarning,
)
from .process import (
	FinalModelConfig,
	Grid,
	GridRef,
	GridStack,
	PartitionSet,
	aggregate,
	final_model,
	rescale,
	summarize,
)
