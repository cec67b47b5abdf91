"""
=============================================================================
RESP PROTOCOL COMPONENTS
=============================================================================

    request.py   Bytes → Request   (RequestParser, incremental)
    reply.py     Reply → bytes     (StatusReply, BulkReply, ...)

The server core only depends on two things from here: parse() returning a
Request or None, and Reply.write_to(). Swapping in another request/reply
protocol means replacing this package.

=============================================================================
"""

from .request import (
    Request,
    RequestParser,
    parse_request,
    encode_request,
)
from .reply import (
    Reply,
    StatusReply,
    ErrorReply,
    IntegerReply,
    BulkReply,
    MultiBulkReply,
    MonitorReply,
    to_reply,
    ok,
    error,
    unknown_command,
)

__all__ = [
    # Requests
    "Request",
    "RequestParser",
    "parse_request",
    "encode_request",
    # Replies
    "Reply",
    "StatusReply",
    "ErrorReply",
    "IntegerReply",
    "BulkReply",
    "MultiBulkReply",
    "MonitorReply",
    "to_reply",
    "ok",
    "error",
    "unknown_command",
]
