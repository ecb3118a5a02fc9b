"""Utility functions for Union Report Agent."""

from .config_loader import (
    load_config,
    get_graph_settings,
    get_collection_settings,
    get_low_coverage_threshold,
    get_type_resolution,
    get_export_settings,
)
from .id_generator import generate_run_id, generate_source_id, generate_export_filename
from .coercion import CoercionError, coerce_value
from .formatting import flatten_value, display_text, sanitize_for_excel

__all__ = [
    "load_config",
    "get_graph_settings",
    "get_collection_settings",
    "get_low_coverage_threshold",
    "get_type_resolution",
    "get_export_settings",
    "generate_run_id",
    "generate_source_id",
    "generate_export_filename",
    "CoercionError",
    "coerce_value",
    "flatten_value",
    "display_text",
    "sanitize_for_excel",
]
