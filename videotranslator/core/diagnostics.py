"""
Diagnostics: pre-flight system checks (disk space, service reachability).
"""

import logging
import shutil
import time
from pathlib import Path

import requests

from videotranslator.core.constants import (
    CONNECTIVITY_TIMEOUT_SEC, SLOW_RESPONSE_MS, DEFAULT_CONNECTIVITY_ENDPOINTS,
)

logger = logging.getLogger(__name__)


def _existing_parent(path: Path) -> Path:
    """disk_usage needs an existing path; walk up until one exists."""
    path = Path(path)
    while not path.exists() and path.parent != path:
        path = path.parent
    return path


def check_disk_space(path: Path, required_mb: int) -> dict:
    """Return free space info for the volume holding `path`."""
    usage = shutil.disk_usage(_existing_parent(path))
    free_mb = usage.free // (1024 * 1024)
    return {
        "path": str(path),
        "free_mb": free_mb,
        "required_mb": required_mb,
        "sufficient": free_mb >= required_mb,
    }


def check_service(url: str, timeout: float = CONNECTIVITY_TIMEOUT_SEC) -> dict:
    """
    Probe one HTTP endpoint. Any HTTP response counts as reachable; only
    connection failures and timeouts count as unreachable.
    """
    info = {"url": url, "reachable": False, "status_code": None,
            "response_ms": None, "slow": False, "error": None}
    start = time.monotonic()
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.exceptions.Timeout as e:
        info["error"] = f"Timeout: {e}"
        return info
    except requests.exceptions.ConnectionError as e:
        info["error"] = f"Connection error: {e}"
        return info
    except requests.exceptions.RequestException as e:
        info["error"] = str(e)
        return info

    elapsed_ms = int((time.monotonic() - start) * 1000)
    info.update(reachable=True, status_code=resp.status_code,
                response_ms=elapsed_ms, slow=elapsed_ms > SLOW_RESPONSE_MS)
    return info


def check_connectivity(endpoints: dict[str, str] | None = None,
                       timeout: float = CONNECTIVITY_TIMEOUT_SEC) -> dict:
    """Probe every endpoint; returns {name: check_service(...)}."""
    endpoints = endpoints or DEFAULT_CONNECTIVITY_ENDPOINTS
    results = {}
    for name, url in endpoints.items():
        results[name] = check_service(url, timeout)
        if not results[name]["reachable"]:
            logger.warning("%s unreachable (%s): %s", name, url, results[name]["error"])
    return results


def get_diagnostics(workspace: Path, required_mb: int = 0,
                    endpoints: dict[str, str] | None = None) -> dict:
    """Gather all diagnostic information."""
    return {
        "disk": check_disk_space(workspace, required_mb),
        "services": check_connectivity(endpoints),
    }
