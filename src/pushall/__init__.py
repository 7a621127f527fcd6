"""pushall: push notification ingestion with a paged, live-updating message log."""
import subprocess
from importlib.metadata import PackageNotFoundError, version


def _get_version() -> str:
    """Release tag of a git checkout, else the installed distribution's version."""
    try:
        described = subprocess.run(
            ["git", "describe", "--tags"],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        described = None

    if described is not None and described.returncode == 0:
        return described.stdout.strip().removeprefix("v")

    try:
        return version("pushall")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _get_version()
