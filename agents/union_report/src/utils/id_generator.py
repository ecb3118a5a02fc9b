"""ID generation utilities."""

import uuid
from datetime import datetime
from typing import Optional


def generate_run_id(prefix: str = "rpt") -> str:
    """
    Generate a unique run ID.

    Args:
        prefix: Prefix for the ID (default: "rpt" for report run)

    Returns:
        Run ID in format: {prefix}-{date}-{short_uuid}
    """
    date_str = datetime.now().strftime("%Y%m%d")
    short_uuid = str(uuid.uuid4())[:8]
    return f"{prefix}-{date_str}-{short_uuid}"


def generate_source_id(site_id: str, list_id: str) -> str:
    """
    Generate the identifier of a list/library source.

    Returns:
        Source ID in format: {site_id}:{list_id}
    """
    return f"{site_id}:{list_id}"


def generate_export_filename(file_format: str, now: Optional[datetime] = None) -> str:
    """
    Generate a download file name for an export.

    Args:
        file_format: "csv" or "xlsx"
        now: Timestamp to embed (default: current time)

    Returns:
        File name in format: sp-report-{epoch_millis}.{file_format}
    """
    now = now or datetime.now()
    return f"sp-report-{int(now.timestamp() * 1000)}.{file_format}"
