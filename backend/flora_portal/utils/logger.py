import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("flora_portal")

SENSITIVE_KEYS = (
    "consumer_key",
    "consumer_secret",
    "password",
    "authorization",
    "x-api-key",
    "api_key",
)


def mask_value(value: Any) -> str:
    value = str(value)
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"


def sanitize(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not data:
        return {}
    sanitized = dict(data)
    for key in list(sanitized.keys()):
        if key.lower() in SENSITIVE_KEYS:
            sanitized[key] = mask_value(sanitized[key])
    return sanitized


class UpstreamCallLogger:
    """Bounded in-memory log of outbound calls to WordPress and AI providers."""

    def __init__(self, max_logs: int = 1000):
        self.logs = []
        self.max_logs = max_logs

    def log_call(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "params": sanitize(params),
            "status_code": status_code,
            "duration_ms": duration_ms,
            "error": error,
        }
        self.logs.append(entry)
        if len(self.logs) > self.max_logs:
            self.logs.pop(0)

        if error:
            logger.error("upstream %s %s failed: %s", method, url, error)
        elif status_code is not None and status_code >= 400:
            logger.warning("upstream %s %s -> %s (%.0fms)", method, url, status_code, duration_ms or 0)
        else:
            logger.debug("upstream %s %s -> %s (%.0fms)", method, url, status_code, duration_ms or 0)
        return entry

    def get_logs(self, limit: Optional[int] = None) -> list:
        if limit is not None:
            return self.logs[-limit:] if limit > 0 else []
        return self.logs

    def clear_logs(self):
        self.logs = []
        logger.info("Cleared upstream call logs")


upstream_logger = UpstreamCallLogger()
