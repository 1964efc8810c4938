"""cvefabric reporting modules."""

from .sarif import convert_to_sarif, export_sarif_report, validate_sarif_schema

__all__ = [
    "convert_to_sarif",
    "export_sarif_report",
    "validate_sarif_schema",
]
