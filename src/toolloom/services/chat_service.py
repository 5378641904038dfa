import json
import uuid
from typing import Any, Dict, Set

from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from toolloom.core.logger import setup_logger
from toolloom.core.settings import settings
from toolloom.models.chat_model import ChatErrorMessage, ErrorMessage, SendMessageRequest
from toolloom.services.chat_runtime import complete_chat_turn, run_chat_turn

logger = setup_logger(__name__)


class ConversationGuard:
    """One turn in flight per conversation; a second concurrent turn is rejected, not queued."""

    def __init__(self) -> None:
        self._in_flight: Set[str] = set()

    def try_acquire(self, conversation_id: str) -> bool:
        if conversation_id in self._in_flight:
            return False
        self._in_flight.add(conversation_id)
        return True

    def release(self, conversation_id: str) -> None:
        self._in_flight.discard(conversation_id)


def _error_response(type_: str, message: str, status_code: int, retryable: bool, req_id: str) -> JSONResponse:
    err = ChatErrorMessage(error=ErrorMessage(type=type_, message=message, retryable=retryable))
    return JSONResponse(content=err.model_dump(), status_code=status_code, headers={"X-Request-Id": req_id})


def _encode_event(event: Dict[str, Any]) -> str:
    etype = event.get("type")
    if etype == "done":
        return "data: [DONE]\n\n"
    if etype in ("message", "final"):
        body = {"type": etype, "message": event["message"].model_dump(mode="json")}
    else:
        body = event
    return f"data: {json.dumps(body, ensure_ascii=False)}\n\n"


async def dispatch_turn(conversation_id: str, req: SendMessageRequest, raw_req: Request):
    """
    Entry point for a user message on a conversation.
    Delegates execution to the chat runtime (JSON or SSE).
    """
    req_id = raw_req.headers.get("x-request-id") or uuid.uuid4().hex[:8]
    state = raw_req.app.state

    missing = [k for k in ("providers", "executor", "store", "turn_guard") if getattr(state, k, None) is None]
    if missing:
        logger.error(f"Chat services not initialized. req_id={req_id} missing={missing}")
        return _error_response(
            "server_error",
            f"Service unavailable: not initialized (missing: {', '.join(missing)}).",
            503,
            True,
            req_id,
        )

    if await state.store.get_conversation(conversation_id) is None:
        return _error_response("not_found", f"Unknown conversation: {conversation_id}", 404, False, req_id)

    guard: ConversationGuard = state.turn_guard
    if not guard.try_acquire(conversation_id):
        logger.info(f"Rejecting concurrent turn req_id={req_id} conversation={conversation_id}")
        return _error_response(
            "conversation_busy",
            "A reply is already being generated for this conversation.",
            409,
            True,
            req_id,
        )

    turn_args = dict(
        conversation_id=conversation_id,
        user_input=req.content,
        registry=state.providers,
        executor=state.executor,
        store=state.store,
        system_prompt=settings.SYSTEM_PROMPT,
    )

    if req.stream:
        logger.info(f"Dispatching streaming turn req_id={req_id} conversation={conversation_id}")

        async def sse_generator():
            try:
                async for event in run_chat_turn(**turn_args):
                    yield _encode_event(event)
            finally:
                guard.release(conversation_id)

        return StreamingResponse(
            sse_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "X-Request-Id": req_id,
            },
            # Covers clients that disconnect before the stream is iterated.
            background=BackgroundTask(guard.release, conversation_id),
        )

    logger.info(f"Dispatching turn req_id={req_id} conversation={conversation_id}")
    try:
        result = await complete_chat_turn(**turn_args)
    finally:
        guard.release(conversation_id)

    status_code = 200
    if result.error is not None and result.error["error"]["type"] == "no_provider_configured":
        status_code = 400
    elif result.error is not None:
        status_code = 502
    return JSONResponse(
        content=result.model_dump(mode="json"),
        status_code=status_code,
        headers={"X-Request-Id": req_id},
    )
