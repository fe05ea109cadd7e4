from .classifier import classify_record, classify_records
from .tags import parse_imeta_tag

__all__ = [
    "classify_record",
    "classify_records",
    "parse_imeta_tag",
]
