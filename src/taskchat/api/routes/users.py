"""
User presence and unread API routes.

Both read models live in the process-wide broadcaster and reflect only the
connections held by this process.
"""

from fastapi import APIRouter, Depends

from taskchat.api.deps import get_broadcaster
from taskchat.api.schemas import UnreadStateSchema, UserStatusResponse
from taskchat.threads.broadcaster import Broadcaster

router = APIRouter()


@router.get("/online-status", response_model=list[UserStatusResponse])
async def get_online_status(
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> list[UserStatusResponse]:
    """Online flag for every user seen since startup."""
    return [
        UserStatusResponse(username=username, online=online)
        for username, online in broadcaster.online_status().items()
    ]


@router.get("/{username}/unread", response_model=dict[int, UnreadStateSchema])
async def get_unread(
    username: str,
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> dict[int, UnreadStateSchema]:
    """Unread state per task for a user (empty when nothing is unread)."""
    return {
        task_id: UnreadStateSchema(
            count=state.count,
            mention=state.mention,
            mentioned_user=state.mentioned_user,
            sender_user=state.sender_user,
        )
        for task_id, state in broadcaster.unread_for(username).items()
    }
