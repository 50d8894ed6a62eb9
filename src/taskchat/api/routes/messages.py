"""
Conversation API routes.

Endpoints for reading a task's thread and for appending, replying to and
editing messages. Every successful write is pushed to live viewers.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from taskchat.api.auth import Identity, get_identity
from taskchat.api.deps import get_broadcaster
from taskchat.api.schemas import (
    ConversationResponse,
    RecentConversationItem,
    ThreadMessageSchema,
    UpsertMessageRequest,
)
from taskchat.db.connection import get_db
from taskchat.exceptions import (
    InvalidPathError,
    MalformedContentError,
    StorageUnavailableError,
    TaskNotFoundError,
)
from taskchat.threads.broadcaster import Broadcaster
from taskchat.threads.service import ConversationService
from taskchat.threads.tree import (
    ThreadMessage,
    count_messages,
    thread_from_json,
    thread_to_json,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[ThreadMessageSchema])
async def get_messages(
    task_id: int = Query(..., alias="taskId", description="Task whose thread to load"),
    session: Session = Depends(get_db),
) -> list[dict]:
    """
    Get the thread of a task.

    A task without a conversation returns an empty list.
    """
    service = ConversationService(session)
    try:
        thread = service.get_thread(task_id)
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return thread_to_json(thread)


@router.get("/recent", response_model=list[RecentConversationItem])
async def get_recent_conversations(
    limit: int = Query(20, ge=1, le=200, description="Max conversations to return"),
    session: Session = Depends(get_db),
) -> list[RecentConversationItem]:
    """Get conversations, most recently active first."""
    service = ConversationService(session)
    try:
        conversations = service.get_recent(limit=limit)
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return [
        RecentConversationItem(
            task_id=conversation.task_id,
            updated_at=conversation.updated_at,
            message_count=count_messages(thread_from_json(conversation.thread)),
        )
        for conversation in conversations
    ]


@router.post("/upsert", response_model=ConversationResponse)
async def upsert_message(
    body: UpsertMessageRequest,
    identity: Identity = Depends(get_identity),
    session: Session = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> ConversationResponse:
    """
    Append, reply or edit a message, then broadcast the new thread.

    - ``isEdit`` false, no ``path``: append a top-level message
    - ``isEdit`` false, ``path``: reply to the message at ``path``
    - ``isEdit`` true, ``path``: replace that message's content

    The touched top-level message moves to the end of the thread.

    Raises:
        HTTPException(404): If the task does not exist
        HTTPException(409): If ``path`` does not resolve
        HTTPException(422): If the content is empty or an edit has no path
        HTTPException(503): If the store is unavailable
    """
    message = ThreadMessage.from_dict(body.new_message.model_dump())
    service = ConversationService(session)

    try:
        update = service.submit(
            body.task_id,
            message.content,
            path=body.path,
            is_edit=body.is_edit,
            replies=message.replies,
        )
    except TaskNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"ok": False, "reason": e.reason, "message": str(e)},
        )
    except InvalidPathError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"ok": False, "reason": e.reason},
        )
    except MalformedContentError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"ok": False, "reason": e.reason, "message": str(e)},
        )
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    await broadcaster.broadcast(
        update.task_id, update.thread, identity.username, update.message
    )

    return ConversationResponse(
        task_id=update.task_id,
        thread=thread_to_json(update.thread),
        updated_at=update.conversation.updated_at,
    )
