"""Conversation entry points: message intake, status and workflow attachment."""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from agentcollab.core.errors import TemplateNotFoundError
from agentcollab.core.models import ChatMessage
from agentcollab.core.transport import NEW_MESSAGE, ConversationTransport, TransportEvent
from agentcollab.orchestration.builder import WorkflowBuilder
from agentcollab.orchestration.orchestrator import CollaborationOrchestrator
from agentcollab.runtime import get_orchestrator, get_transport, get_workflow_builder

router = APIRouter(prefix="/conversations", tags=["conversations"])


class MessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    sender_id: str = Field("user", description="Identifier of the sender")
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = "text"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageAccepted(BaseModel):
    conversation_id: str
    message_id: str


class WorkflowAttachRequest(BaseModel):
    template_id: str


class MessageEvent(BaseModel):
    sender_id: str
    content: str
    type: str
    timestamp: str
    metadata: Dict[str, Any]


class ExchangeResponse(BaseModel):
    conversation_id: str
    message_id: str
    replies: List[MessageEvent]


def _chat_message(conversation_id: str, request: MessageRequest) -> ChatMessage:
    return ChatMessage(
        conversation_id=conversation_id,
        sender_id=request.sender_id,
        content=request.content,
        message_id=request.message_id,
        type=request.type,
        metadata=dict(request.metadata),
    )


def _message_event(event: TransportEvent) -> MessageEvent:
    return MessageEvent(
        sender_id=event.payload["senderId"],
        content=event.payload["content"],
        type=event.payload["type"],
        timestamp=event.payload["timestamp"],
        metadata=event.payload["metadata"],
    )


@router.post("/{conversation_id}/messages", response_model=MessageAccepted, status_code=status.HTTP_202_ACCEPTED)
async def post_message(
    conversation_id: str,
    request: MessageRequest,
    background_tasks: BackgroundTasks,
    orchestrator: CollaborationOrchestrator = Depends(get_orchestrator),
) -> MessageAccepted:
    message = _chat_message(conversation_id, request)
    background_tasks.add_task(orchestrator.process_message, message)
    return MessageAccepted(conversation_id=conversation_id, message_id=message.message_id)


@router.post("/{conversation_id}/exchange", response_model=ExchangeResponse)
async def exchange(
    conversation_id: str,
    request: MessageRequest,
    orchestrator: CollaborationOrchestrator = Depends(get_orchestrator),
    transport: ConversationTransport = Depends(get_transport),
) -> ExchangeResponse:
    """Process a message inline and return the messages published while it ran."""
    message = _chat_message(conversation_id, request)
    replies: List[MessageEvent] = []
    async with transport.subscribe(conversation_id) as inbox:
        await orchestrator.process_message(message)
        while not inbox.empty():
            event = inbox.get_nowait()
            if event.type == NEW_MESSAGE:
                replies.append(_message_event(event))
    return ExchangeResponse(conversation_id=conversation_id, message_id=message.message_id, replies=replies)


@router.get("/{conversation_id}/messages", response_model=List[MessageEvent])
async def list_messages(
    conversation_id: str,
    transport: ConversationTransport = Depends(get_transport),
) -> List[MessageEvent]:
    return [_message_event(event) for event in transport.messages(conversation_id)]


@router.get("/{conversation_id}/status")
async def conversation_status(
    conversation_id: str,
    orchestrator: CollaborationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.status(conversation_id)


@router.post("/{conversation_id}/workflow")
async def attach_workflow(
    conversation_id: str,
    request: WorkflowAttachRequest,
    orchestrator: CollaborationOrchestrator = Depends(get_orchestrator),
    builder: WorkflowBuilder = Depends(get_workflow_builder),
) -> Dict[str, Optional[str]]:
    try:
        template = builder.template(request.template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    orchestrator.attach_workflow(conversation_id, template)
    return {"conversationId": conversation_id, "templateId": template.id}


@router.delete("/{conversation_id}/workflow", status_code=status.HTTP_204_NO_CONTENT)
async def detach_workflow(
    conversation_id: str,
    orchestrator: CollaborationOrchestrator = Depends(get_orchestrator),
) -> None:
    if not orchestrator.detach_workflow(conversation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No workflow attached")
