# app/core/version.py
"""Version string from the VERSION file, installed metadata, or git."""
import subprocess
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path


VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"
DISTRIBUTION_NAME = "creator-paygate"


@lru_cache()
def get_version() -> str:
    """Resolve the running version.

    Priority:
    1. VERSION file (for Docker/production)
    2. Installed distribution metadata
    3. Git short hash, as 0.0.0+<hash> (for local checkouts)
    4. Fallback to 0.0.0-unknown
    """
    if VERSION_FILE.exists():
        version = VERSION_FILE.read_text().strip()
        if version:
            return version

    try:
        return package_version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    try:
        short_hash = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            check=True
        ).stdout.strip()
        return f"0.0.0+{short_hash}"
    except (subprocess.CalledProcessError, FileNotFoundError):
        return "0.0.0-unknown"


VERSION = get_version()
