"""
Threaded conversation engine.

Recursive reply threads per task, the sender/timestamp header codec, pure
mutations with relocate-to-bottom ordering, live fan-out and templated
annotations for task field changes.
"""

from taskchat.threads.header import (
    HeaderStamp,
    MessageHeader,
    decode_header,
    encode_header,
    sender_tag,
    strip_header,
)
from taskchat.threads.mutator import MutationResult, append, edit, reply
from taskchat.threads.tree import ThreadMessage, flatten, resolve

__all__ = [
    "HeaderStamp",
    "MessageHeader",
    "MutationResult",
    "ThreadMessage",
    "append",
    "decode_header",
    "edit",
    "encode_header",
    "flatten",
    "reply",
    "resolve",
    "sender_tag",
    "strip_header",
]
