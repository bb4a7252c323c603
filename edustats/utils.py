"""Small helpers shared by the commands."""

from __future__ import annotations

import requests

CONNECTIVITY_TIMEOUT = 5.0


def check_connectivity(url: str) -> bool:
    """Tell whether a HEAD request to the URL succeeds with a status below 400."""
    try:
        response = requests.head(url, timeout=CONNECTIVITY_TIMEOUT, allow_redirects=True)
    except requests.RequestException:
        return False
    with response:
        return response.status_code < 400


def format_year_range(start: int, end: int) -> str:
    """Format a year range, collapsing it to one year when both ends match."""
    if start == end:
        return str(start)
    return f"{start}-{end}"