from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr

# Required fields on the submission bodies are declared Optional on purpose:
# the service checks them in a fixed order and reports the first one missing.


class UserCreds(BaseModel):
    email: EmailStr
    password: str


class RegisterData(UserCreds):
    name: Optional[str] = None


class UsernameData(BaseModel):
    username: Optional[str] = None


class ChatSessionCreate(BaseModel):
    title: Optional[str] = None
    notebook_id: Optional[str] = None
    personality: Optional[str] = None


class ChatSessionUpdate(BaseModel):
    title: Optional[str] = None
    personality: Optional[str] = None


class ChatMessageData(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    token_count: Optional[int] = None
    is_error: bool = False


class NotebookData(BaseModel):
    title: Optional[str] = None
    content: str = ""
    is_public: bool = False
    tags: List[str] = []


class NotebookUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None


class ContactData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None


class FeedbackData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    rating: Optional[int] = None


class NewsletterData(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class UserResponse(BaseModel):
    success: bool
    user_id: str
    message: str = "User registered successfully"


class LoginResponse(BaseModel):
    success: bool
    token: str
    message: str = "Login successful"


class MessageResponse(BaseModel):
    success: bool
    message: str


class SubmissionResponse(BaseModel):
    success: bool
    message: str
    id: str


class NewsletterResponse(BaseModel):
    status: str
    message: str


class UsernameResponse(BaseModel):
    message: str = "Username updated successfully"
    username: str


class TogglePublicResponse(BaseModel):
    message: str
    is_public: bool


class ChatSessionOut(BaseModel):
    id: str
    title: Optional[str] = None
    notebook_id: Optional[str] = None
    personality: str
    created_at: str
    updated_at: str
    last_message_at: str
    is_archived: bool
    is_pinned: bool
    state: str
    summary: Optional[str] = None


class ChatMessageOut(BaseModel):
    id: str
    session_id: str
    role: str
    content: str
    created_at: str
    metadata: Optional[Dict[str, Any]] = None
    token_count: Optional[int] = None
    is_error: bool


class NotebookOut(BaseModel):
    id: str
    title: str
    content: str
    is_public: bool
    created_at: str
    updated_at: str
    tags: List[str]


class PublicNotebookOut(NotebookOut):
    author: Optional[str] = None


class TagOut(BaseModel):
    id: str
    name: str
