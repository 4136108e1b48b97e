# app/core/version.py
"""Version string reported by the health check."""
import subprocess
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path

DISTRIBUTION_NAME = "pay-per-asset-gateway"
VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"
UNKNOWN_VERSION = "0.0.0-unknown"


def _git_version() -> str:
    """`0.<commit count>.<short hash>` of the checkout, e.g. 0.42.1a2b3c4."""
    def git(*args: str) -> str:
        return subprocess.run(
            ["git", *args], capture_output=True, text=True, check=True
        ).stdout.strip()

    return f"0.{git('rev-list', '--count', 'HEAD')}.{git('rev-parse', '--short', 'HEAD')}"


@lru_cache()
def get_version() -> str:
    """
    Resolve the running version, first match wins:
    1. VERSION file written by the container build
    2. Installed distribution metadata
    3. Git checkout
    """
    if VERSION_FILE.exists():
        pinned = VERSION_FILE.read_text().strip()
        if pinned:
            return pinned

    try:
        return package_version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    try:
        return _git_version()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return UNKNOWN_VERSION


VERSION = get_version()
