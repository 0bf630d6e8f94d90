"""
Build information reported at startup and by /api/dev/info.
"""

import os
import subprocess
from datetime import datetime
from typing import Optional

_BUILD_NUMBER: Optional[str] = None
_STARTED_AT = datetime.now()


def get_build_number() -> str:
    """
    Resolve the build number once per process.

    BUILD_NUMBER from the environment wins, then the short git hash, then a
    timestamp.
    """
    global _BUILD_NUMBER

    if _BUILD_NUMBER:
        return _BUILD_NUMBER

    build_num = os.getenv("BUILD_NUMBER")
    if build_num:
        _BUILD_NUMBER = build_num
        return build_num

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short=7", "HEAD"],
            capture_output=True,
            text=True,
            timeout=2,
            cwd=os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        )
        if result.returncode == 0 and result.stdout.strip():
            _BUILD_NUMBER = result.stdout.strip()
            return _BUILD_NUMBER
    except (subprocess.TimeoutExpired, OSError):
        pass

    _BUILD_NUMBER = _STARTED_AT.strftime("%Y%m%d-%H%M%S")
    return _BUILD_NUMBER


def get_build_info() -> dict:
    return {
        "build_number": get_build_number(),
        "started_at": _STARTED_AT.isoformat(),
        "uptime_seconds": int((datetime.now() - _STARTED_AT).total_seconds()),
    }
