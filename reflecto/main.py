"""
FastAPI application for the Reflecto journaling backend.

Routes are thin: they resolve the caller's identity through the
``get_identity`` dependency, hand it to a service explicitly, and serialise
the result. Domain errors (``ReflectoError`` subclasses) are turned into
JSON responses by the exception handlers registered in ``create_app``.

Run with::

    uvicorn reflecto.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .domain import Identity, ReflectoError, Unauthenticated
from .models import (
    ChatMessageData,
    ChatMessageOut,
    ChatSessionCreate,
    ChatSessionOut,
    ChatSessionUpdate,
    ContactData,
    FeedbackData,
    LoginResponse,
    MessageResponse,
    NewsletterData,
    NewsletterResponse,
    NotebookData,
    NotebookOut,
    NotebookUpdate,
    PublicNotebookOut,
    RegisterData,
    SubmissionResponse,
    TagOut,
    TogglePublicResponse,
    UserCreds,
    UsernameData,
    UsernameResponse,
    UserResponse,
)
from .services import Reflecto
from .utils import time_now

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

NEWSLETTER_MESSAGES = {
    "subscribed": "Thank you for subscribing to our newsletter!",
    "reactivated": "Your subscription has been reactivated",
    "already_subscribed": "You are already subscribed to our newsletter",
    "unsubscribed": "You have been unsubscribed from our newsletter",
    "not_subscribed": "This email is not subscribed to our newsletter",
}

router = APIRouter()


# -------------------------------
# Dependencies
# -------------------------------

def get_reflecto(request: Request) -> Reflecto:
    return request.app.state.reflecto


def get_identity(request: Request, authorization: Optional[str] = Header(None)) -> Optional[Identity]:
    """Resolve the caller from the Authorization header. Anonymous callers get None."""
    return get_reflecto(request).auth.resolve_identity(authorization)


# -------------------------------
# System
# -------------------------------

@router.get("/")
async def read_root():
    return {"message": "Reflecto API is running", "version": VERSION}


@router.get("/health")
def health_check(reflecto: Reflecto = Depends(get_reflecto)):
    return {
        "status": "healthy" if reflecto.db.ping() else "degraded",
        "timestamp": time_now(),
    }


# -------------------------------
# Accounts
# -------------------------------

@router.post("/register", response_model=UserResponse, status_code=201)
def register(creds: RegisterData, reflecto: Reflecto = Depends(get_reflecto)):
    uid = reflecto.auth.register(creds.email, creds.password, creds.name)
    return UserResponse(success=True, user_id=uid)


@router.post("/login", response_model=LoginResponse)
def login(creds: UserCreds, reflecto: Reflecto = Depends(get_reflecto)):
    token = reflecto.auth.login(creds.email, creds.password)
    return LoginResponse(success=True, token=token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    authorization: Optional[str] = Header(None),
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    if identity is None:
        raise Unauthenticated()
    reflecto.auth.logout(authorization)
    return MessageResponse(success=True, message="Logged out successfully")


@router.put("/user/username", response_model=UsernameResponse)
def update_username(
    data: UsernameData,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    username = reflecto.auth.set_username(identity, data.username)
    return UsernameResponse(username=username)


# -------------------------------
# Chat sessions
# -------------------------------

@router.get("/chats")
def list_chats(
    page: int = 1,
    limit: Optional[int] = None,
    include_archived: bool = False,
    sort_by: str = "last_message_at",
    sort_direction: str = "desc",
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    result = reflecto.chats.list_sessions(identity, page, limit, include_archived, sort_by, sort_direction)
    return result.to_dict()


@router.post("/chats", response_model=ChatSessionOut, status_code=201)
def create_chat(
    data: ChatSessionCreate,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.create_session(identity, data.title, data.notebook_id, data.personality).to_dict()


@router.get("/chats/{session_id}")
def get_chat(
    session_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.get_session(identity, session_id)


@router.put("/chats/{session_id}", response_model=ChatSessionOut)
def update_chat(
    session_id: str,
    data: ChatSessionUpdate,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.update_session(identity, session_id, data.title, data.personality).to_dict()


@router.put("/chats/{session_id}/archive", response_model=ChatSessionOut)
def archive_chat(
    session_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.archive(identity, session_id).to_dict()


@router.put("/chats/{session_id}/restore", response_model=ChatSessionOut)
def restore_chat(
    session_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.restore(identity, session_id).to_dict()


@router.put("/chats/{session_id}/pin", response_model=ChatSessionOut)
def pin_chat(
    session_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.pin(identity, session_id).to_dict()


@router.put("/chats/{session_id}/unpin", response_model=ChatSessionOut)
def unpin_chat(
    session_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.unpin(identity, session_id).to_dict()


@router.get("/chats/{session_id}/messages")
def list_chat_messages(
    session_id: str,
    page: int = 1,
    limit: Optional[int] = None,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.chats.list_messages(identity, session_id, page, limit).to_dict()


@router.post("/chats/{session_id}/messages", response_model=ChatMessageOut, status_code=201)
def add_chat_message(
    session_id: str,
    data: ChatMessageData,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    message = reflecto.chats.add_message(
        identity, session_id, data.role, data.content, data.metadata, data.token_count, data.is_error
    )
    return message.to_dict()


# -------------------------------
# Notebooks. Public routes come first so "public" is never read as an id.
# -------------------------------

@router.get("/notebooks/public")
def list_public_notebooks(page: int = 1, limit: Optional[int] = None, reflecto: Reflecto = Depends(get_reflecto)):
    result = reflecto.notebooks.list_public(page, limit)
    data = result.to_dict()
    data["items"] = [n.to_public_dict() for n in result.items]
    return data


@router.get("/notebooks/public/user/{handle}")
def list_public_notebooks_by_handle(
    handle: str, page: int = 1, limit: Optional[int] = None, reflecto: Reflecto = Depends(get_reflecto)
):
    result = reflecto.notebooks.list_public_by_handle(handle, page, limit)
    data = result.to_dict()
    data["items"] = [n.to_public_dict() for n in result.items]
    return data


@router.get("/notebooks/public/{notebook_id}", response_model=PublicNotebookOut)
def get_public_notebook(notebook_id: str, reflecto: Reflecto = Depends(get_reflecto)):
    return reflecto.notebooks.get_public(notebook_id).to_public_dict()


@router.get("/notebooks")
def list_notebooks(
    q: Optional[str] = None,
    tag: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.notebooks.list_owned(identity, page, limit, query=q, tag=tag).to_dict()


@router.post("/notebooks", response_model=NotebookOut, status_code=201)
def create_notebook(
    data: NotebookData,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.notebooks.create(identity, data.title, data.content, data.is_public, data.tags).to_dict()


@router.get("/notebooks/{notebook_id}", response_model=NotebookOut)
def get_notebook(
    notebook_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.notebooks.get(identity, notebook_id).to_dict()


@router.put("/notebooks/{notebook_id}", response_model=NotebookOut)
def update_notebook(
    notebook_id: str,
    data: NotebookUpdate,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.notebooks.update(identity, notebook_id, data.title, data.content, data.tags).to_dict()


@router.delete("/notebooks/{notebook_id}", response_model=MessageResponse)
def delete_notebook(
    notebook_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    reflecto.notebooks.delete(identity, notebook_id)
    return MessageResponse(success=True, message="Notebook deleted successfully")


@router.put("/notebooks/{notebook_id}/toggle-public", response_model=TogglePublicResponse)
def toggle_notebook_public(
    notebook_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    notebook = reflecto.notebooks.toggle_public(identity, notebook_id)
    state = "public" if notebook.is_public else "private"
    return TogglePublicResponse(message=f"Notebook is now {state}", is_public=notebook.is_public)


@router.get("/tags", response_model=List[TagOut])
def list_tags(identity: Optional[Identity] = Depends(get_identity), reflecto: Reflecto = Depends(get_reflecto)):
    return [t.to_dict() for t in reflecto.notebooks.list_tags(identity)]


# -------------------------------
# Submissions
# -------------------------------

@router.post("/contact", response_model=SubmissionResponse, status_code=201)
def submit_contact(
    data: ContactData,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.submissions.submit("contact", data.model_dump(), identity)


@router.post("/feedback", response_model=SubmissionResponse, status_code=201)
def submit_feedback(
    data: FeedbackData,
    identity: Optional[Identity] = Depends(get_identity),
    reflecto: Reflecto = Depends(get_reflecto),
):
    return reflecto.submissions.submit("feedback", data.model_dump(), identity)


@router.post("/newsletter/subscribe", response_model=NewsletterResponse)
def newsletter_subscribe(data: NewsletterData, reflecto: Reflecto = Depends(get_reflecto)):
    status = reflecto.submissions.subscribe(data.email, data.name)
    return NewsletterResponse(status=status, message=NEWSLETTER_MESSAGES[status])


@router.post("/newsletter/unsubscribe", response_model=NewsletterResponse)
def newsletter_unsubscribe(data: NewsletterData, reflecto: Reflecto = Depends(get_reflecto)):
    status = reflecto.submissions.unsubscribe(data.email)
    return NewsletterResponse(status=status, message=NEWSLETTER_MESSAGES[status])


# -------------------------------
# Error mapping
# -------------------------------

async def reflecto_error_handler(request: Request, exc: ReflectoError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.kind)
    else:
        logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.kind)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = "body"
    message = "Invalid request"
    if errors:
        loc = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        field = loc[-1] if loc else field
        message = f"Invalid value for {field}: {errors[0].get('msg', 'invalid')}"
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": "validation_error", "field": field},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around one ``Reflecto`` facade."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logger.info("Reflecto API starting up, database %s", settings.database_path)
        yield
        logger.info("Reflecto API shutting down")

    app = FastAPI(
        title="Reflecto API",
        description="Notebooks, assistant chat sessions and feedback intake for Reflecto",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.reflecto = Reflecto(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ReflectoError, reflecto_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("reflecto.main:create_app", factory=True, host="0.0.0.0", port=8000)
