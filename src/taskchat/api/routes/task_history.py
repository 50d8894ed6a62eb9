"""
Task history API routes.

Recording a task edit logs every field delta under one change group and
appends any templated annotations to the task's thread.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskchat.api.auth import Identity, get_identity
from taskchat.api.deps import get_broadcaster
from taskchat.api.schemas import (
    ChangeGroupSchema,
    FieldChangeSchema,
    LatestFieldResponse,
    TaskHistoryCreate,
    TaskHistoryCreateResponse,
    TaskHistoryRecord,
    TaskHistoryResponse,
)
from taskchat.db.connection import get_db
from taskchat.db.repositories import FieldChange, TaskChangeHistoryRepository
from taskchat.exceptions import (
    MalformedContentError,
    StorageUnavailableError,
    TaskNotFoundError,
)
from taskchat.threads.broadcaster import Broadcaster
from taskchat.threads.service import ConversationService
from taskchat.threads.tree import thread_to_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=TaskHistoryCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_task_changes(
    body: TaskHistoryCreate,
    identity: Identity = Depends(get_identity),
    session: Session = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> TaskHistoryCreateResponse:
    """
    Record the field changes of one task edit.

    Changes with a matching template produce system messages on the task
    thread, which are broadcast like any user message.

    Raises:
        HTTPException(400): If no changes are given
        HTTPException(404): If the task does not exist
        HTTPException(422): If an annotation cannot be encoded
        HTTPException(503): If the store is unavailable
    """
    if not body.changes:
        raise HTTPException(status_code=400, detail="No changes provided")

    changes = [
        FieldChange(
            field_changed=change.field_changed,
            old_value=change.old_value,
            new_value=change.new_value,
        )
        for change in body.changes
    ]

    service = ConversationService(session)
    try:
        result = service.annotate(
            body.task_id, changes, identity.username, changed_at=body.changed_at
        )
    except TaskNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"ok": False, "reason": e.reason, "message": str(e)},
        )
    except MalformedContentError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"ok": False, "reason": e.reason, "message": str(e)},
        )
    except StorageUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if result.annotated:
        await broadcaster.broadcast(
            body.task_id, result.thread, identity.username, result.messages[-1]
        )

    return TaskHistoryCreateResponse(
        change_group_id=result.change_group_id,
        records=[
            TaskHistoryRecord(
                id=record.id,
                task_id=record.task_id,
                field_changed=record.field_changed,
                old_value=record.old_value,
                new_value=record.new_value,
                change_group_id=record.change_group_id,
                changed_at=record.changed_at,
            )
            for record in result.records
        ],
        annotations=[message.to_dict() for message in result.messages],
        thread=thread_to_json(result.thread) if result.thread is not None else None,
    )


@router.get("/{task_id}", response_model=TaskHistoryResponse)
async def get_task_history(
    task_id: int,
    session: Session = Depends(get_db),
) -> TaskHistoryResponse:
    """
    Get a task's change history grouped by edit, newest first.

    Raises:
        HTTPException(404): If the task has no history
    """
    repo = TaskChangeHistoryRepository(session)
    try:
        groups = repo.get_grouped(task_id)
    except SQLAlchemyError as e:
        logger.error("Failed to load history for task %d: %s", task_id, e)
        raise HTTPException(status_code=503, detail="Storage unavailable")

    if not groups:
        raise HTTPException(status_code=404, detail="No history found for this task")

    return TaskHistoryResponse(
        task_id=task_id,
        total_groups=len(groups),
        history=[
            ChangeGroupSchema(
                change_group_id=group.change_group_id,
                changed_at=group.changed_at,
                changes=[
                    FieldChangeSchema(
                        field_changed=change.field_changed,
                        old_value=change.old_value,
                        new_value=change.new_value,
                    )
                    for change in group.changes
                ],
            )
            for group in groups
        ],
    )


@router.get("/{task_id}/latest/{field}", response_model=LatestFieldResponse)
async def get_latest_field_change(
    task_id: int,
    field: str,
    session: Session = Depends(get_db),
) -> LatestFieldResponse:
    """Get the most recent old/new values of a field (nulls when never changed)."""
    repo = TaskChangeHistoryRepository(session)
    try:
        record = repo.get_latest_by_field(task_id, field)
    except SQLAlchemyError as e:
        logger.error("Failed to load %s history for task %d: %s", field, task_id, e)
        raise HTTPException(status_code=503, detail="Storage unavailable")

    if record is None:
        return LatestFieldResponse()
    return LatestFieldResponse(old_value=record.old_value, new_value=record.new_value)
