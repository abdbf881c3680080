from .grid import Grid, GridRef, GridStack
from .aggregate import MODEL_TYPES, FinalModelConfig, PartitionSet, aggregate
from .rescale import rescale
from .summarize import summarize
from .final_model import final_model
