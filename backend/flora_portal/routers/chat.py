from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.claude_chat import ChatNotConfigured, ChatUpstreamError, run_chat


router = APIRouter(prefix="/api/chat", tags=["chat"])


class ChatRequest(BaseModel):
    message: Optional[str] = None
    conversation: Optional[List[Dict[str, Any]]] = None


@router.post("/claude")
async def chat_with_claude(
    payload: ChatRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.message or not payload.message.strip():
        return JSONResponse({"success": False, "error": "Message is required"}, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        return await run_chat(payload.message, payload.conversation)
    except ChatNotConfigured as exc:
        return JSONResponse({"success": False, "error": str(exc)}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    except ChatUpstreamError as exc:
        return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)
