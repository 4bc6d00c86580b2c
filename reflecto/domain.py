"""Domain objects and the error taxonomy shared by every layer."""

import json
import math
from typing import Any, Dict, List, Optional


class Identity:
    """The authenticated caller, as resolved from a session on the server."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def __eq__(self, other):
        return isinstance(other, Identity) and other.user_id == self.user_id

    def __hash__(self):
        return hash(self.user_id)

    def __repr__(self):
        return f"Identity({self.user_id!r})"


class ChatSession:
    """A conversation with the assistant, owned by exactly one user."""

    def __init__(self, id: str, user_id: str, title: Optional[str], notebook_id: Optional[str],
                 personality: str, created_at: str, updated_at: str, last_message_at: str,
                 is_archived: bool = False, is_pinned: bool = False, summary: Optional[str] = None):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.notebook_id = notebook_id
        self.personality = personality
        self.created_at = created_at
        self.updated_at = updated_at
        self.last_message_at = last_message_at
        self.is_archived = bool(is_archived)
        self.is_pinned = bool(is_pinned)
        self.summary = summary

    @property
    def state(self) -> str:
        return "archived" if self.is_archived else "active"

    @classmethod
    def from_row(cls, row) -> "ChatSession":
        return cls(
            row["id"], row["user_id"], row["title"], row["notebook_id"], row["personality"],
            row["created_at"], row["updated_at"], row["last_message_at"],
            row["is_archived"], row["is_pinned"], row["summary"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "notebook_id": self.notebook_id,
            "personality": self.personality,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_message_at": self.last_message_at,
            "is_archived": self.is_archived,
            "is_pinned": self.is_pinned,
            "state": self.state,
            "summary": self.summary,
        }


class ChatMessage:
    """A single message within a chat session."""

    def __init__(self, id: str, session_id: str, role: str, content: str, created_at: str,
                 metadata: Optional[Dict[str, Any]] = None, token_count: Optional[int] = None,
                 is_error: bool = False):
        self.id = id
        self.session_id = session_id
        self.role = role
        self.content = content
        self.created_at = created_at
        self.metadata = metadata
        self.token_count = token_count
        self.is_error = bool(is_error)

    @classmethod
    def from_row(cls, row) -> "ChatMessage":
        metadata = json.loads(row["metadata"]) if row["metadata"] else None
        return cls(
            row["id"], row["session_id"], row["role"], row["content"], row["created_at"],
            metadata, row["token_count"], row["is_error"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
            "metadata": self.metadata,
            "token_count": self.token_count,
            "is_error": self.is_error,
        }


class Notebook:
    """A notebook entry. Only notebooks flagged public are visible to other users."""

    def __init__(self, id: str, user_id: str, title: str, content: str, is_public: bool,
                 created_at: str, updated_at: str, tags: Optional[List[str]] = None,
                 author: Optional[str] = None):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.content = content
        self.is_public = bool(is_public)
        self.created_at = created_at
        self.updated_at = updated_at
        self.tags = tags or []
        self.author = author

    @classmethod
    def from_row(cls, row) -> "Notebook":
        keys = row.keys()
        author = row["author"] if "author" in keys else None
        return cls(
            row["id"], row["user_id"], row["title"], row["content"] or "", row["is_public"],
            row["created_at"], row["updated_at"], author=author,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "is_public": self.is_public,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tags": list(self.tags),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["author"] = self.author
        return data


class Tag:
    def __init__(self, id: str, name: str):
        self.id = id
        self.name = name

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}


class Page:
    """One page of a 1-indexed paginated result."""

    def __init__(self, items: List[Any], page: int, limit: int, total: int):
        self.items = items
        self.page = page
        self.limit = limit
        self.total = total

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_more": self.page < self.total_pages,
            "has_previous": self.page > 1,
        }


# -------------------------------
# Error taxonomy
# -------------------------------

class ReflectoError(Exception):
    """Base class for errors that map onto a client-facing response.

    ``message`` is always safe to return to the caller.
    """

    kind = "error"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.kind}


class Unauthenticated(ReflectoError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Unauthorized"


class NotFound(ReflectoError):
    """Resource absent, or owned by someone else. The two cases are not distinguished."""

    kind = "not_found"
    status_code = 404
    default_message = "Resource not found or you do not have permission to access it"


class ValidationError(ReflectoError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"{field.replace('_', ' ').capitalize()} is required")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class Conflict(ReflectoError):
    kind = "conflict"
    status_code = 409
    default_message = "Resource already exists"


class StoreUnavailable(ReflectoError):
    """The store could not be reached or failed mid-operation. The only retryable kind."""

    kind = "store_unavailable"
    status_code = 500
    default_message = "Service temporarily unavailable, please try again"
