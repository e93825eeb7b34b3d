"""Chat endpoints - streamed assistant turns and chat deletion."""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import ollama
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from services.agent.chat import generate_title, message_parts, resolve_chat_model, run_chat_turn
from services.agent.tools import latest_user_message
from services.api.auth import get_caller, get_optional_caller
from services.storage.gateway import ChatStore, StorageError
from shared import get_db, settings
from shared.context import CallerContext
from shared.events import QueueSink

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    messages: List[Dict[str, Any]]
    selected_chat_model: str = Field(..., alias="selectedChatModel")


def get_llm_client() -> ollama.AsyncClient:
    return ollama.AsyncClient(host=settings.ollama_base_url)


async def _ndjson(sink: QueueSink, task: asyncio.Task):
    async for event in sink:
        yield json.dumps(event, default=str) + "\n"
    # Surface anything the turn raised outside its own error handling
    await task


@router.post("/chat")
async def post_chat(
    request: ChatRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    client: ollama.AsyncClient = Depends(get_llm_client)
):
    """Persist the latest user message and stream the assistant's turn as NDJSON events."""
    chat_model = resolve_chat_model(request.selected_chat_model)
    if chat_model is None:
        raise HTTPException(status_code=400, detail=f"Unknown chat model: {request.selected_chat_model}")

    user_message = latest_user_message(request.messages)
    if user_message is None:
        raise HTTPException(status_code=400, detail="No user message found")

    store = ChatStore(db)
    try:
        chat = await asyncio.to_thread(store.get_chat, request.id)
        if chat is not None and chat.user_id != caller.user_id:
            raise HTTPException(status_code=403, detail="Forbidden")
        if chat is None:
            title = await generate_title(client, user_message)
            await asyncio.to_thread(store.save_chat, request.id, caller.user_id, title)
        await asyncio.to_thread(store.save_messages, request.id, [{
            "id": user_message.get("id"),
            "role": "user",
            "content": message_parts(user_message),
        }])
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to save chat")

    sink = QueueSink()
    task = asyncio.create_task(
        run_chat_turn(request.id, request.messages, chat_model, client, caller, sink)
    )
    return StreamingResponse(_ndjson(sink, task), media_type="application/x-ndjson")


@router.delete("/chat")
def delete_chat(
    id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    caller: Optional[CallerContext] = Depends(get_optional_caller)
):
    if not id:
        raise HTTPException(status_code=404, detail="Not Found")
    if caller is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    store = ChatStore(db)
    try:
        chat = store.get_chat(id)
        if chat is None:
            raise HTTPException(status_code=404, detail="Not Found")
        if chat.user_id != caller.user_id:
            raise HTTPException(status_code=403, detail="Forbidden")
        store.delete_chat(id)
    except StorageError:
        raise HTTPException(status_code=500, detail="An error occurred while processing your request")

    logger.info(f"Deleted chat {id} for user {caller.user_id}")
    return {"message": "Chat deleted"}
