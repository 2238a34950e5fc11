"""Conversation and model management endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from docchat.engine.orchestrator import ChatOrchestrator, get_orchestrator
from docchat.models.conversation import Conversation, Message, ModelOption
from docchat.models.schemas import ChatResponse, ConversationSummary, EditMessageRequest, ModelListResponse

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])
models_router = APIRouter(prefix="/models", tags=["models"])


def _require_conversation(orchestrator: ChatOrchestrator, conversation_id: str) -> Conversation:
    """Look up a conversation by id.

    Raises:
        HTTPException: 404 if the conversation does not exist.
    """
    conversation = orchestrator.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation {conversation_id} not found",
        )
    return conversation


def _require_current(orchestrator: ChatOrchestrator, conversation_id: str) -> Conversation:
    conversation = _require_conversation(orchestrator, conversation_id)
    if orchestrator.current_id != conversation_id:
        orchestrator.switch_conversation(conversation_id)
    return conversation


@conversations_router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> list[ConversationSummary]:
    """List conversations, newest first."""
    return [
        ConversationSummary.from_conversation(c, orchestrator.current_id)
        for c in orchestrator.list_conversations()
    ]


@conversations_router.post("", response_model=Conversation, status_code=status.HTTP_201_CREATED)
async def create_conversation(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> Conversation:
    """Start a new conversation and make it current."""
    return orchestrator.new_conversation()


@conversations_router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Conversation:
    return _require_conversation(orchestrator, conversation_id)


@conversations_router.post("/{conversation_id}/select", response_model=Conversation)
async def select_conversation(
    conversation_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Conversation:
    """Make a conversation current."""
    _require_conversation(orchestrator, conversation_id)
    return orchestrator.switch_conversation(conversation_id)


@conversations_router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> None:
    """Delete a conversation. Deleting the current one starts a new one."""
    _require_conversation(orchestrator, conversation_id)
    orchestrator.delete_conversation(conversation_id)
    logger.info(f"Deleted conversation {conversation_id}")


@conversations_router.patch("/{conversation_id}/messages/{message_id}", response_model=Message)
async def edit_message(
    conversation_id: str,
    message_id: str,
    request: EditMessageRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Message:
    """Replace a message's content without regenerating the reply."""
    _require_current(orchestrator, conversation_id)
    try:
        return orchestrator.edit_message(message_id, request.content)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Message {message_id} not found",
        ) from e


@conversations_router.delete(
    "/{conversation_id}/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_message(
    conversation_id: str,
    message_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> None:
    _require_current(orchestrator, conversation_id)
    try:
        orchestrator.delete_message(message_id)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Message {message_id} not found",
        ) from e


@conversations_router.post("/{conversation_id}/messages/{index}/regenerate", response_model=ChatResponse)
async def regenerate(
    conversation_id: str,
    index: int,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Discard the reply at ``index`` and generate it again.

    Raises:
        404: Unknown conversation or index.
        409: Another turn is in flight or nothing is left to reply to.
    """
    _require_current(orchestrator, conversation_id)
    try:
        result = await orchestrator.regenerate(index)
    except IndexError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No message at index {index}",
        ) from e

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot regenerate right now",
        )
    return ChatResponse(message=result.message, state=result.state, history_status=result.history_status)


@models_router.get("", response_model=ModelListResponse)
async def list_models(orchestrator: ChatOrchestrator = Depends(get_orchestrator)) -> ModelListResponse:
    return ModelListResponse(models=orchestrator.models, default_model=orchestrator.settings.default_model)


@models_router.post("", response_model=ModelOption, status_code=status.HTTP_201_CREATED)
async def add_model(
    model: ModelOption,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ModelOption:
    try:
        return orchestrator.add_model(model.id, model.name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@models_router.delete("/{model_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_model(
    model_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> None:
    """Remove a model unless it is selected or the default.

    Raises:
        409: The model is in use.
    """
    try:
        orchestrator.delete_model(model_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
