from __future__ import annotations


class FinalModelError(Exception):
	"""Base class for errors raised while building final models."""


class ConfigurationError(FinalModelError, ValueError):
	"""Raised when the final model options are inconsistent."""


class ShapeMismatchError(FinalModelError, ValueError):
	"""Raised when grids combined together are not co-registered."""


class EmptyPartitionWarning(UserWarning):
	"""No partitions were available for an algorithm."""


class SinglePartitionWarning(UserWarning):
	"""Only one partition was available, final models equal the input model."""
