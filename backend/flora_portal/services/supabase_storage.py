"""Supabase Storage access for COA (certificate of analysis) PDFs.

All COA objects live under the ``pdfs/`` folder of the COA bucket.
"""

import re
import time
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from flora_portal.config import settings
from flora_portal.utils.logger import logger

COA_FOLDER = "pdfs"
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")

_supabase_client: Optional[Client] = None


class StorageNotConfigured(RuntimeError):
    pass


def get_supabase_client() -> Optional[Client]:
    global _supabase_client
    if _supabase_client:
        return _supabase_client

    url = settings.SUPABASE_URL
    key = settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_KEY

    if not url or not key:
        logger.warning("SUPABASE_URL or SUPABASE_KEY/SUPABASE_SERVICE_ROLE_KEY not set. COA storage is unavailable.")
        return None

    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        logger.warning("SUPABASE_SERVICE_ROLE_KEY not set. Using SUPABASE_KEY (Anon). Uploads may fail due to RLS.")

    _supabase_client = create_client(url, key)
    return _supabase_client


def _require_client() -> Client:
    client = get_supabase_client()
    if not client:
        raise StorageNotConfigured("Supabase storage is not configured")
    return client


def is_pdf(filename: str, content_type: Optional[str]) -> bool:
    return "pdf" in (content_type or "") or filename.lower().endswith(".pdf")


def coa_object_name(original_name: str, now_ms: Optional[int] = None) -> str:
    """``<epoch ms>_<name>`` with everything but ``[a-zA-Z0-9.-]`` replaced by ``_``."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{timestamp}_{_UNSAFE_CHARS.sub('_', original_name)}"


def upload_coa(original_name: str, file_bytes: bytes) -> Dict[str, Any]:
    """Upload a COA PDF; never overwrites an existing object."""
    client = _require_client()
    file_name = coa_object_name(original_name)
    path = f"{COA_FOLDER}/{file_name}"

    logger.info(f"Uploading COA to Supabase Storage: bucket={settings.COA_BUCKET}, path={path}, size={len(file_bytes)}")
    client.storage.from_(settings.COA_BUCKET).upload(
        path=path,
        file=file_bytes,
        file_options={"content-type": "application/pdf", "cache-control": "3600", "upsert": "false"},
    )
    return {
        "path": path,
        "fileName": file_name,
        "originalName": original_name,
        "size": len(file_bytes),
    }


def delete_coas(file_names: List[str]) -> Dict[str, Any]:
    """Remove COA objects by file name; reports which ones were not removed."""
    client = _require_client()
    paths = [f"{COA_FOLDER}/{name}" for name in file_names]
    removed = client.storage.from_(settings.COA_BUCKET).remove(paths) or []

    removed_names = set()
    for item in removed:
        name = item.get("name") if isinstance(item, dict) else getattr(item, "name", None)
        if name:
            removed_names.add(name)

    deleted = [path for path in paths if path in removed_names]
    failed = [path for path in paths if path not in removed_names]
    logger.info(f"Deleted {len(deleted)} of {len(paths)} COA files from bucket={settings.COA_BUCKET}")
    return {"deleted": deleted, "failed": failed}


def list_coas(limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    client = _require_client()
    return client.storage.from_(settings.COA_BUCKET).list(
        COA_FOLDER,
        {"limit": limit, "offset": offset, "sortBy": {"column": "created_at", "order": "desc"}},
    )


def get_signed_url(path: str, expiry_seconds: int = 3600) -> str:
    client = _require_client()
    res = client.storage.from_(settings.COA_BUCKET).create_signed_url(path, expiry_seconds)
    if isinstance(res, dict):
        return res.get("signedURL") or res.get("signedUrl") or ""
    return res


def check_connection() -> Dict[str, Any]:
    """Verify the COA bucket exists and its PDF folder can be listed."""
    client = _require_client()
    buckets = client.storage.list_buckets()
    names = [getattr(bucket, "name", None) or bucket.get("name") for bucket in buckets]
    if settings.COA_BUCKET not in names:
        return {"success": False, "error": "COA bucket not found in Supabase storage", "buckets": names}
    pdfs = client.storage.from_(settings.COA_BUCKET).list(COA_FOLDER, {"limit": 5})
    return {"success": True, "bucket": settings.COA_BUCKET, "sample_files": len(pdfs or [])}
