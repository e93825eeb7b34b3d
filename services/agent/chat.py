"""Chat agent - streaming multi-step tool loop over Ollama.

Everything the client sees goes through one event sink: model text deltas,
tool calls and results, the invoice pipeline's progress events and the
final ``finish`` (or ``error``) event.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import ollama

from services.agent.prompts import TITLE_PROMPT, system_prompt
from services.agent.tools import TOOL_DEFINITIONS, ToolContext, attachment_label, message_attachments, run_tool
from services.extractor.llm import OllamaInvoiceExtractor
from services.extractor.orchestrator import ExtractionOrchestrator
from services.storage.gateway import ChatStore, StorageError
from shared import settings
from shared.config import SessionLocal
from shared.context import CallerContext
from shared.events import ProgressEmitter, QueueSink
from shared.models import generate_id

logger = logging.getLogger(__name__)

TEXT_DELTA = "text-delta"
TOOL_CALL = "tool-call"
TOOL_RESULT = "tool-result"
FINISH = "finish"
ERROR = "error"

CHAT_ERROR_MESSAGE = "Oops, an error occurred!"
MAX_TITLE_LENGTH = 80


@dataclass(frozen=True)
class ChatModel:
    name: str
    model: str
    tools_enabled: bool


def resolve_chat_model(selected: str) -> Optional[ChatModel]:
    models = {
        "chat-model": ChatModel("chat-model", settings.ollama_model, True),
        "chat-model-reasoning": ChatModel("chat-model-reasoning", settings.ollama_reasoning_model, False),
    }
    return models.get(selected)


def message_text(message: Dict[str, Any]) -> str:
    """Plain text of a client message; content may be a string or a list of parts."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(p.get("text", "") for p in content if isinstance(p, dict) and p.get("type") == "text")
    return ""


def message_parts(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Stored representation of a client message: text part plus file parts."""
    parts = []
    text = message_text(message)
    if text:
        parts.append({"type": "text", "text": text})
    for attachment in message_attachments(message):
        parts.append({
            "type": "file",
            "url": attachment.url,
            "name": attachment.name,
            "contentType": attachment.content_type,
        })
    return parts


def to_ollama_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    history = []
    for message in messages:
        role = message.get("role")
        if role not in ("user", "assistant"):
            continue
        content = message_text(message)
        attachments = message_attachments(message)
        if attachments:
            listing = ", ".join(f"{attachment_label(a, i)} ({a.content_type})" for i, a in enumerate(attachments))
            content = f"{content}\n\n[Attached files: {listing}]"
        history.append({"role": role, "content": content})
    return history


def _fallback_title(text: str) -> str:
    title = " ".join(text.split()).replace(":", "").replace('"', "")
    return title[:MAX_TITLE_LENGTH] or "New chat"


async def generate_title(client: ollama.AsyncClient, message: Dict[str, Any]) -> str:
    """Short chat title summarizing the first user message."""
    text = message_text(message)
    try:
        response = await client.chat(
            model=settings.ollama_model,
            messages=[
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": text or "(attachment only)"},
            ],
            options={"temperature": 0.2, "num_predict": 40}
        )
        title = (response["message"]["content"] or "").strip().strip('"').replace(":", "")
    except Exception as e:
        logger.warning(f"Title generation failed, using message text: {e}")
        title = ""
    return title[:MAX_TITLE_LENGTH] if title else _fallback_title(text)


class ChatAgent:
    """Streams one assistant turn, executing tool calls for up to ``max_steps`` model calls."""

    def __init__(self, client: ollama.AsyncClient, chat_model: ChatModel, tool_context: ToolContext,
                 max_steps: Optional[int] = None):
        self.client = client
        self.chat_model = chat_model
        self.ctx = tool_context
        self.max_steps = max_steps or settings.chat_max_steps

    @property
    def emitter(self) -> ProgressEmitter:
        return self.ctx.emitter

    async def _stream_step(self, history: List[Dict[str, Any]]):
        stream = await self.client.chat(
            model=self.chat_model.model,
            messages=history,
            tools=TOOL_DEFINITIONS if self.chat_model.tools_enabled else None,
            stream=True
        )
        text_parts = []
        tool_calls = []
        async for part in stream:
            message = part["message"]
            content = message.get("content")
            if content:
                text_parts.append(content)
                self.emitter.send({"type": TEXT_DELTA, "content": content})
            if message.get("tool_calls"):
                tool_calls.extend(message["tool_calls"])
        return "".join(text_parts), tool_calls

    async def run(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run the turn and return the response messages to persist."""
        history = [{"role": "system", "content": system_prompt(self.chat_model.tools_enabled)}]
        history.extend(to_ollama_messages(messages))
        response_messages = []
        finish_reason = "max-steps"

        for step in range(self.max_steps):
            text, tool_calls = await self._stream_step(history)

            calls = [
                {
                    "id": generate_id(),
                    "name": call["function"]["name"],
                    "arguments": call["function"].get("arguments") or {},
                }
                for call in tool_calls
            ]
            assistant = {"role": "assistant", "content": text}
            if calls:
                assistant["tool_calls"] = [
                    {"function": {"name": c["name"], "arguments": c["arguments"]}} for c in calls
                ]
            history.append(assistant)

            parts = [{"type": "text", "text": text}] if text else []
            parts.extend(
                {"type": "tool-call", "toolCallId": c["id"], "toolName": c["name"], "args": c["arguments"]}
                for c in calls
            )
            if parts:
                response_messages.append({"id": generate_id(), "role": "assistant", "content": parts})

            if not calls:
                finish_reason = "stop"
                break

            results = []
            for call in calls:
                self.emitter.send({
                    "type": TOOL_CALL,
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "args": call["arguments"],
                })
                result = await run_tool(call["name"], call["arguments"], self.ctx)
                self.emitter.send({
                    "type": TOOL_RESULT,
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "result": result,
                })
                history.append({
                    "role": "tool",
                    "content": json.dumps(result, default=str),
                    "tool_name": call["name"],
                })
                results.append({
                    "type": "tool-result",
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "result": result,
                })
            response_messages.append({"id": generate_id(), "role": "tool", "content": results})
            logger.info(f"Chat step {step + 1}: {len(calls)} tool call(s)")

        self.emitter.send({"type": FINISH, "finishReason": finish_reason})
        return response_messages


async def run_chat_turn(chat_id: str, messages: List[Dict[str, Any]], chat_model: ChatModel,
                        client: ollama.AsyncClient, caller: CallerContext, sink: QueueSink) -> None:
    """Run the agent for one request with its own DB session, then close the sink."""
    emitter = ProgressEmitter(sink)
    db = SessionLocal()
    try:
        ctx = ToolContext(
            db=db,
            emitter=emitter,
            caller=caller,
            messages=messages,
            orchestrator=ExtractionOrchestrator(OllamaInvoiceExtractor(client=client))
        )
        response_messages = await ChatAgent(client, chat_model, ctx).run(messages)
        try:
            await asyncio.to_thread(ChatStore(db).save_messages, chat_id, response_messages)
        except StorageError as e:
            logger.error(f"Failed to save chat {chat_id} for user {caller.user_id}: {e}")
    except Exception as e:
        logger.error(f"Chat API Error in chat {chat_id}: {e}", exc_info=True)
        emitter.send({"type": ERROR, "content": CHAT_ERROR_MESSAGE})
    finally:
        db.close()
        sink.close()
