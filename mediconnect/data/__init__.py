"""Data package: tabular parsing, CMS record normalization and bundled reference data."""

from .normalization import CMS_COLUMNS, format_phone_number, normalize, normalize_rows
from .reference import load_fallback_providers, load_knowledge_base, load_specialty_catalog
from .tabular import EmptyInputError, MalformedRowWarning, TabularParseResult, parse, parse_tabular

__all__ = [
    "CMS_COLUMNS",
    "EmptyInputError",
    "MalformedRowWarning",
    "TabularParseResult",
    "format_phone_number",
    "load_fallback_providers",
    "load_knowledge_base",
    "load_specialty_catalog",
    "normalize",
    "normalize_rows",
    "parse",
    "parse_tabular",
]
