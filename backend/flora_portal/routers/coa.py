from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile, status
from fastapi.responses import JSONResponse

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.supabase_storage import (
    StorageNotConfigured,
    check_connection,
    delete_coas,
    get_signed_url,
    is_pdf,
    list_coas,
    upload_coa,
)
from flora_portal.utils.logger import logger


router = APIRouter(prefix="/api/coa", tags=["coa"])


def _failure(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"success": False, "error": error, **extra}, status_code=status_code)


@router.post("/upload")
async def upload_coa_file(
    file: Optional[UploadFile] = File(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if file is None or not file.filename:
        return _failure(status.HTTP_400_BAD_REQUEST, "No file provided")
    if not is_pdf(file.filename, file.content_type):
        return _failure(status.HTTP_400_BAD_REQUEST, "Only PDF files are allowed")

    file_bytes = await file.read()
    try:
        data = upload_coa(file.filename, file_bytes)
    except StorageNotConfigured as e:
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))
    except Exception as e:
        logger.error(f"COA upload failed for {file.filename}: {e}", exc_info=True)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Upload failed: {e}")

    return {"success": True, "data": data}


@router.delete("/delete")
async def delete_coa_files(
    payload: Dict[str, Any] = Body(default_factory=dict),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    file_names: List[str] = payload.get("fileNames") or []
    if not isinstance(file_names, list) or not file_names:
        return _failure(status.HTTP_400_BAD_REQUEST, "No file names provided")

    try:
        result = delete_coas(file_names)
    except StorageNotConfigured as e:
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))
    except Exception as e:
        logger.error(f"COA delete failed: {e}", exc_info=True)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to delete files: {e}")

    deleted, failed = result["deleted"], result["failed"]
    if failed:
        return _failure(
            status.HTTP_207_MULTI_STATUS,
            f"Failed to delete {len(failed)} out of {len(file_names)} files",
            details={"successful": len(deleted), "failed": len(failed), "failures": failed},
        )
    return {
        "success": True,
        "message": f"Successfully deleted {len(deleted)} files",
        "data": {"deletedCount": len(deleted), "deletedFiles": deleted},
    }


@router.get("/files")
async def list_coa_files(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    signed: bool = Query(False, description="Attach a one-hour signed URL to each file"),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    try:
        files = list_coas(limit=limit, offset=offset) or []
        if signed:
            for item in files:
                item["signedUrl"] = get_signed_url(f"pdfs/{item.get('name')}")
    except StorageNotConfigured as e:
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))
    return {"success": True, "data": files}


@router.get("/test-connection")
async def test_storage_connection(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    try:
        return check_connection()
    except StorageNotConfigured as e:
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))
