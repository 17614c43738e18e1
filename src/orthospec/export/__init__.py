"""
Output writers.

CSV tables and JSON visualization payloads for specificity results.
"""

from orthospec.export.csv_writer import (
    CSVWriter,
    write_specificity_csv,
)
from orthospec.export.json_writer import (
    JSONWriter,
    NumpyEncoder,
)

__all__ = [
    "CSVWriter",
    "write_specificity_csv",
    "JSONWriter",
    "NumpyEncoder",
]
