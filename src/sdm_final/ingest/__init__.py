from .partitions import collect_partition_files, load_partition_grids, read_grid
from .statistics import collect_evaluation_files, load_statistics
