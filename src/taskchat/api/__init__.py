"""
HTTP and WebSocket API for taskchat.
"""
