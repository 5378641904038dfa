from typing import List

from fastapi import APIRouter, HTTPException, Request

from toolloom.models.chat_model import SendMessageRequest
from toolloom.models.conversation_model import Conversation, CreateConversationRequest
from toolloom.services.chat_service import dispatch_turn

router = APIRouter()


@router.post("/conversations", status_code=201)
async def create_conversation(body: CreateConversationRequest, raw_req: Request) -> Conversation:
    state = raw_req.app.state
    provider_id = body.provider_id or state.providers.current_id
    return await state.store.create_conversation(title=body.title, provider_id=provider_id)


@router.get("/conversations")
async def list_conversations(raw_req: Request) -> List[Conversation]:
    return await raw_req.app.state.store.list_conversations()


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, raw_req: Request) -> Conversation:
    conv = await raw_req.app.state.store.get_conversation(conversation_id)
    if conv is None:
        raise HTTPException(status_code=404, detail=f"Unknown conversation: {conversation_id}")
    return conv


@router.post("/conversations/{conversation_id}/messages")
async def send_message(conversation_id: str, body: SendMessageRequest, raw_req: Request):
    return await dispatch_turn(conversation_id, body, raw_req)
