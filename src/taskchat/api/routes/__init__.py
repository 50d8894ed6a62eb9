"""
API routes for taskchat.
"""

from taskchat.api.routes import messages, task_history, templates, users, ws

__all__ = [
    "messages",
    "task_history",
    "templates",
    "users",
    "ws",
]
