# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Pool names and cache key prefixes used by the chat services.

Centralized to avoid magic strings. Cache keys are built as
`{prefix}{id}` and invalidated with `{prefix}*` patterns.
"""

from enum import Enum


class BulkheadName(str, Enum):
    """Bulkhead pools of the chat backend."""

    CHAT_WRITE = "chat-write"
    CHAT_READ = "chat-read"

    USER_WRITE = "user-write"
    USER_READ = "user-read"
    USER_CREATE = "user-create"
    USER_DELETE = "user-delete"

    ROOM_WRITE = "room-write"
    ROOM_READ = "room-read"
    ROOM_JOIN = "room-join"
    ROOM_LEAVE = "room-leave"
    ROOM_CREATE = "room-create"
    ROOM_DELETE = "room-delete"

    MESSAGE_WRITE = "message-write"
    MESSAGE_READ = "message-read"
    MESSAGE_CREATE = "message-create"
    MESSAGE_DELETE = "message-delete"


class CacheKeys:
    """Cache key prefixes."""

    USER = "user:"
    USER_LIST = "user:list:"

    ROOM = "room:"
    ROOM_LIST = "rooms-list:"
    PARTICIPANT = "participant:"

    MESSAGE = "message:"
    ROOM_MESSAGES = "room-messages:"

    @staticmethod
    def pattern(prefix: str) -> str:
        """Glob that matches every key under prefix."""
        return f"{prefix}*"
