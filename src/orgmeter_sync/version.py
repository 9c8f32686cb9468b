"""
Version management for the OrgMeter sync.
"""

import os
import subprocess
from typing import Optional

# Base version - update this for releases
BASE_VERSION = "0.1.0"


def get_git_commit_sha() -> Optional[str]:
    """Get the short commit SHA of the checkout the package runs from."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            cwd=os.path.dirname(os.path.abspath(__file__))
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def get_version() -> str:
    """
    Get the current version.

    - ORGMETER_SYNC_VERSION wins when set (container builds pin it)
    - Otherwise base version + git commit SHA
    - Fallback to base version
    """
    pinned = os.getenv("ORGMETER_SYNC_VERSION")
    if pinned:
        return pinned[1:] if pinned.startswith("v") else pinned

    commit_sha = get_git_commit_sha()
    if commit_sha:
        return f"{BASE_VERSION}+{commit_sha}"

    return BASE_VERSION


__version__ = get_version()
