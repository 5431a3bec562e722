"""Row partitioning: vertical position -> row identity, element membership, active row."""

from .partitioner import RowPartitioner, parse_row_id, row_id_for_index

__all__ = ["RowPartitioner", "parse_row_id", "row_id_for_index"]
