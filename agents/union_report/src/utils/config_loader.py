"""Configuration loading utilities."""

import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "graph": {
        "base_url": "https://graph.microsoft.com/v1.0",
        "timeout_seconds": 30,
        "page_size": 200,
        "retry": {
            "max_attempts": 4,
            "base_delay_seconds": 1.0,
            "max_delay_seconds": 30.0,
            "retry_on_status": [429, 500, 502, 503, 504],
        },
    },
    "collection": {
        "export_page_size": 1000,
        "max_rows": 100000,
        "preview_limit": 1000,
    },
    "unification": {
        "type_resolution": "majority",
    },
    "validation": {
        "low_coverage_threshold": 50,
    },
    "normalization": {
        "strict": False,
    },
    "export": {
        "default_format": "xlsx",
        "include_provenance": False,
        "sanitize_formulas": True,
        "green_coverage_threshold": 90,
    },
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file, layered over the built-in defaults.

    Args:
        config_path: Path to a YAML file. Defaults to config/config.yaml in the
            agent directory; a missing default file yields the defaults.

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
        if not Path(config_path).exists():
            logger.debug(f"No config file at {config_path}, using defaults")
            return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return _deep_merge(DEFAULT_CONFIG, config)


def get_graph_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get Microsoft Graph client settings."""
    config = config if config is not None else load_config()
    return _deep_merge(DEFAULT_CONFIG["graph"], config.get('graph', {}))


def get_collection_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get row collection limits (page sizes, safety cap, preview limit)."""
    config = config if config is not None else load_config()
    return _deep_merge(DEFAULT_CONFIG["collection"], config.get('collection', {}))


def get_low_coverage_threshold(config: Optional[Dict[str, Any]] = None) -> int:
    """
    Coverage percentage below which a column is flagged.

    Shared by schema validation and the exporter's colour scale so both agree.
    """
    config = config if config is not None else load_config()
    validation = config.get('validation', {})
    return int(validation.get('low_coverage_threshold', DEFAULT_CONFIG["validation"]["low_coverage_threshold"]))


def get_type_resolution(config: Optional[Dict[str, Any]] = None) -> str:
    """Get the primary type strategy for conflicting columns."""
    config = config if config is not None else load_config()
    return config.get('unification', {}).get('type_resolution', "majority")


def get_export_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get exporter settings."""
    config = config if config is not None else load_config()
    return _deep_merge(DEFAULT_CONFIG["export"], config.get('export', {}))
