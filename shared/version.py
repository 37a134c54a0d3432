"""Project version and release metadata."""

from __future__ import annotations

import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path

VERSION = "0.3.0"
RELEASE_NAME = "Rate Glance v0.3.0"
RELEASE_DATE = "2026-10-12"


def _resolve_build_signature() -> str:
    env_signature = os.getenv("RATE_GLANCE_BUILD_SIGNATURE")
    if env_signature:
        return env_signature

    project_root = Path(__file__).resolve().parents[1]
    try:
        result = subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=project_root,
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
    except (OSError, subprocess.SubprocessError):
        result = ""

    if result:
        return result
    return datetime.now(timezone.utc).strftime("ts-%Y%m%d%H%M%S")


BUILD_SIGNATURE = _resolve_build_signature()

__version__ = VERSION
__codename__ = RELEASE_NAME
__release_date__ = RELEASE_DATE
__build_signature__ = BUILD_SIGNATURE
# Keep in sync with ``pyproject.toml``'s ``project.version``.
DEFAULT_VERSION = __version__


def get_version_info() -> dict[str, str]:
    return {
        "version": __version__,
        "codename": __codename__,
        "release_date": __release_date__,
        "build_signature": __build_signature__,
    }


__all__ = [
    "VERSION",
    "RELEASE_NAME",
    "RELEASE_DATE",
    "BUILD_SIGNATURE",
    "__version__",
    "__codename__",
    "__release_date__",
    "__build_signature__",
    "DEFAULT_VERSION",
    "get_version_info",
]
