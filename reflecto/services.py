import logging
from typing import Any, Dict, List, Optional

from . import access
from .auth import AuthService, check_email
from .config import Settings
from .domain import ChatMessage, ChatSession, Identity, Notebook, Page, Tag, ValidationError
from .storage import ChatStore, Database, NotebookStore, SubmissionStore
from .utils import blank, clamp_page, mask_email

logger = logging.getLogger(__name__)

CHAT_ROLES = ("user", "assistant")
SORT_DIRECTIONS = ("asc", "desc")

REQUIRED_FIELDS = {
    "contact": ("name", "email", "message"),
    "feedback": ("email", "message"),
}
OPTIONAL_FIELDS = {
    "contact": ("subject",),
    "feedback": ("name", "subject", "rating"),
}
CONFIRMATIONS = {
    "contact": "Your message has been sent. We will get back to you soon!",
    "feedback": "Thank you for your feedback!",
}


class ChatService:
    """Chat sessions: creation, listing, archive/restore/pin lifecycle and messages."""

    def __init__(self, store: ChatStore, settings: Settings):
        self.store = store
        self.settings = settings

    def create_session(self, identity: Optional[Identity], title: Optional[str] = None,
                       notebook_id: Optional[str] = None, personality: Optional[str] = None) -> ChatSession:
        identity = access.require_identity(identity)
        title = title.strip() if not blank(title) else None
        return self.store.create_session(identity.user_id, title, notebook_id, personality or "friendly")

    def list_sessions(self, identity: Optional[Identity], page: Optional[int] = 1, limit: Optional[int] = None,
                      include_archived: bool = False, sort_by: str = "last_message_at",
                      sort_direction: str = "desc") -> Page:
        identity = access.require_identity(identity)
        if sort_by not in ChatStore.SORT_COLUMNS:
            raise ValidationError("sort_by", f"sort_by must be one of: {', '.join(ChatStore.SORT_COLUMNS)}")
        if sort_direction not in SORT_DIRECTIONS:
            raise ValidationError("sort_direction", "sort_direction must be 'asc' or 'desc'")
        page, limit = clamp_page(
            page, limit, self.settings.chat_page_size_default, self.settings.chat_page_size_max
        )
        return self.store.list_sessions(identity.user_id, page, limit, include_archived, sort_by, sort_direction)

    def get_session(self, identity: Optional[Identity], session_id: str) -> Dict[str, Any]:
        """The session plus its first page of messages."""
        session = access.load_owned(self.store, identity, session_id)
        messages = self.list_messages(identity, session_id)
        data = session.to_dict()
        data["messages"] = [m.to_dict() for m in messages.items]
        return data

    def update_session(self, identity: Optional[Identity], session_id: str, title: Optional[str] = None,
                       personality: Optional[str] = None) -> ChatSession:
        identity = access.require_identity(identity)
        if title is not None and blank(title):
            raise ValidationError("title", "Title cannot be empty")
        mutation = access.set_fields(
            title=title.strip() if title is not None else None,
            personality=personality,
        )
        return access.perform_owned_mutation(self.store, identity, session_id, mutation)

    def archive(self, identity: Optional[Identity], session_id: str) -> ChatSession:
        return access.perform_owned_mutation(self.store, identity, session_id, access.archive)

    def restore(self, identity: Optional[Identity], session_id: str) -> ChatSession:
        return access.perform_owned_mutation(self.store, identity, session_id, access.restore)

    def pin(self, identity: Optional[Identity], session_id: str) -> ChatSession:
        return access.perform_owned_mutation(self.store, identity, session_id, access.pin)

    def unpin(self, identity: Optional[Identity], session_id: str) -> ChatSession:
        return access.perform_owned_mutation(self.store, identity, session_id, access.unpin)

    def add_message(self, identity: Optional[Identity], session_id: str, role: Optional[str],
                    content: Optional[str], metadata: Optional[Dict[str, Any]] = None,
                    token_count: Optional[int] = None, is_error: bool = False) -> ChatMessage:
        identity = access.require_identity(identity)
        if role not in CHAT_ROLES:
            raise ValidationError("role", "Role must be 'user' or 'assistant'")
        if blank(content):
            raise ValidationError("content")
        return self.store.add_message(
            session_id, identity.user_id, role, content, metadata, token_count, is_error
        )

    def list_messages(self, identity: Optional[Identity], session_id: str, page: Optional[int] = 1,
                      limit: Optional[int] = None) -> Page:
        identity = access.require_identity(identity)
        page, limit = clamp_page(
            page, limit, self.settings.message_page_size_default, self.settings.message_page_size_default
        )
        return self.store.list_messages(session_id, identity.user_id, page, limit)


class NotebookService:
    """Owned notebook CRUD, tags, and the anonymous public lookups."""

    def __init__(self, store: NotebookStore, settings: Settings):
        self.store = store
        self.settings = settings

    @staticmethod
    def _title(title: Optional[str]) -> str:
        if blank(title):
            raise ValidationError("title", "Notebook title cannot be empty")
        return title.strip()

    def create(self, identity: Optional[Identity], title: Optional[str], content: str = "",
               is_public: bool = False, tags: Optional[List[str]] = None) -> Notebook:
        identity = access.require_identity(identity, "You must be signed in to create a notebook")
        return self.store.create(identity.user_id, self._title(title), content or "", is_public, tags or [])

    def get(self, identity: Optional[Identity], notebook_id: str) -> Notebook:
        return access.load_owned(self.store, identity, notebook_id)

    def list_owned(self, identity: Optional[Identity], page: Optional[int] = 1, limit: Optional[int] = None,
                   query: Optional[str] = None, tag: Optional[str] = None) -> Page:
        identity = access.require_identity(identity)
        page, limit = clamp_page(
            page, limit, self.settings.notebook_page_size_default, self.settings.notebook_page_size_max
        )
        return self.store.list_owned(
            identity.user_id, page, limit,
            query=None if blank(query) else query.strip(),
            tag=None if blank(tag) else tag.strip(),
        )

    def update(self, identity: Optional[Identity], notebook_id: str, title: Optional[str] = None,
               content: Optional[str] = None, tags: Optional[List[str]] = None) -> Notebook:
        identity = access.require_identity(identity, "You must be signed in to update a notebook")
        changes: Dict[str, Any] = {}
        if title is not None:
            changes["title"] = self._title(title)
        if content is not None:
            changes["content"] = content
        if tags is not None:
            changes["tags"] = tags
        return access.perform_owned_mutation(self.store, identity, notebook_id, lambda _nb: changes)

    def toggle_public(self, identity: Optional[Identity], notebook_id: str) -> Notebook:
        identity = access.require_identity(identity, "You must be signed in to update a notebook")
        return access.perform_owned_mutation(self.store, identity, notebook_id, access.toggle_public)

    def delete(self, identity: Optional[Identity], notebook_id: str) -> None:
        identity = access.require_identity(identity)
        self.store.delete_owned(notebook_id, identity.user_id)

    def list_tags(self, identity: Optional[Identity]) -> List[Tag]:
        identity = access.require_identity(identity)
        return self.store.list_tags(identity.user_id)

    def get_public(self, notebook_id: str) -> Notebook:
        return self.store.get_public(notebook_id)

    def list_public(self, page: Optional[int] = 1, limit: Optional[int] = None) -> Page:
        page, limit = clamp_page(
            page, limit, self.settings.public_page_size_default, self.settings.public_page_size_max
        )
        return self.store.list_public(page, limit)

    def list_public_by_handle(self, handle: str, page: Optional[int] = 1, limit: Optional[int] = None) -> Page:
        page, limit = clamp_page(
            page, limit, self.settings.public_page_size_default, self.settings.public_page_size_max
        )
        return self.store.list_public(page, limit, username=handle)


class SubmissionService:
    """Contact/feedback intake and newsletter subscriptions. None of these need a login."""

    def __init__(self, store: SubmissionStore):
        self.store = store

    def submit(self, kind: str, fields: Dict[str, Any], identity: Optional[Identity] = None) -> Dict[str, Any]:
        """
        Validate and persist a contact or feedback submission.

        Required fields are checked in a fixed order and the first missing
        one is reported. Optional fields are stored as explicit ``None``.

        Raises:
            ValidationError: Missing required field, malformed email or rating
        """
        if kind not in REQUIRED_FIELDS:
            raise ValueError(f"Unknown submission kind {kind!r}")
        for name in REQUIRED_FIELDS[kind]:
            if blank(fields.get(name)):
                raise ValidationError(name)

        values = {name: str(fields[name]).strip() for name in REQUIRED_FIELDS[kind]}
        values["email"] = check_email(values["email"])
        for name in OPTIONAL_FIELDS[kind]:
            value = fields.get(name)
            values[name] = None if blank(value) else value

        owner_id = identity.user_id if identity is not None else None
        if kind == "contact":
            submission_id = self.store.add_contact(
                values["name"], values["email"], values["subject"], values["message"], owner_id
            )
        else:
            rating = values["rating"]
            if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
                raise ValidationError("rating", "Rating must be a whole number from 1 to 5")
            submission_id = self.store.add_feedback(
                values["name"], values["email"], values["subject"], values["message"], rating, owner_id
            )
        logger.info("Stored %s submission %s from %s", kind, submission_id, mask_email(values["email"]))
        return {"success": True, "message": CONFIRMATIONS[kind], "id": submission_id}

    def subscribe(self, email: Optional[str], name: Optional[str] = None) -> str:
        if blank(email):
            raise ValidationError("email")
        return self.store.subscribe(check_email(email), None if blank(name) else name.strip())

    def unsubscribe(self, email: Optional[str]) -> str:
        if blank(email):
            raise ValidationError("email")
        return self.store.unsubscribe(check_email(email))


class Reflecto:
    """
    Application facade wiring the store, the session resolver and the services.

    Attributes:
        db (Database): Shared SQLite store
        auth (AuthService): Session resolver and account operations
        chats (ChatService): Chat session operations
        notebooks (NotebookService): Notebook and tag operations
        submissions (SubmissionService): Contact, feedback and newsletter intake
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db = Database(settings.database_path)
        self.auth = AuthService(self.db, settings.auth_secret, settings.session_ttl_hours)
        self.chats = ChatService(ChatStore(self.db), settings)
        self.notebooks = NotebookService(NotebookStore(self.db), settings)
        self.submissions = SubmissionService(SubmissionStore(self.db))
