"""
Row normalization: header synonyms and manufacturer canonicalization.
"""

from .header_mapping import DEFAULT_MAPPING_PATH, HeaderMapping
from .manufacturer import ManufacturerNormalizer
from .row_normalizer import NormalizedBatch, RowNormalizer

__all__ = [
    "DEFAULT_MAPPING_PATH",
    "HeaderMapping",
    "ManufacturerNormalizer",
    "NormalizedBatch",
    "RowNormalizer",
]
