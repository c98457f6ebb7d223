"""Service module exports."""

from . import (
    brokerage_formats,
    business_rules,
    csv_encoding,
    csv_parser,
    export_csv,
    field_mapping,
    import_csv,
    import_orchestrator,
    import_types,
)

__all__ = [
    "brokerage_formats",
    "business_rules",
    "csv_encoding",
    "csv_parser",
    "export_csv",
    "field_mapping",
    "import_csv",
    "import_orchestrator",
    "import_types",
]
