"""Post-processing that makes datasets efficient to query.

Identifies the dimension columns of a dataset and converts its date columns.
"""

from .optimizer import (
    DIMENSION_CARDINALITY_LIMIT,
    OptimizationResult,
    identify_dates,
    identify_dimensions,
    optimize_dataset_metadata,
)

__all__ = [
    "DIMENSION_CARDINALITY_LIMIT",
    "OptimizationResult",
    "identify_dates",
    "identify_dimensions",
    "optimize_dataset_metadata",
]
