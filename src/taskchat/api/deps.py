"""
Shared FastAPI dependencies.
"""

from fastapi import Request

from taskchat.threads.broadcaster import Broadcaster


def get_broadcaster(request: Request) -> Broadcaster:
    """The process-wide broadcaster attached to the application."""
    return request.app.state.broadcaster
