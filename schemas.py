"""
Database Schemas for CampusConnect

Each document model represents a MongoDB collection.
The collection name is the lowercase class name.

Collections:
- User (roles: Admin, Faculty, Student)
- Session (login sessions)
- Post (forum posts in the Official, Student and Anonymous sections)
- Comment (replies on posts)
- Notification (per-user activity notifications)

Request bodies live at the bottom of the module; they are validated before any
write reaches the store.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class Role(str, Enum):
    ADMIN = "Admin"
    FACULTY = "Faculty"
    STUDENT = "Student"


ELEVATED_ROLES = (Role.ADMIN.value, Role.FACULTY.value)


class Section(str, Enum):
    OFFICIAL = "Official"
    STUDENT = "Student"
    ANONYMOUS = "Anonymous"


class Category(str, Enum):
    EVENTS = "Events"
    EXAMS = "Exams"
    PLACEMENTS = "Placements"
    ACADEMICS = "Academics"
    CLUBS = "Clubs"
    LOST_AND_FOUND = "Lost & Found"
    GENERAL = "General"
    OTHER = "Other"


class AttachmentType(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    DOCUMENT = "document"


class NotificationType(str, Enum):
    COMMENT = "comment"
    UPVOTE = "upvote"
    VERIFIED = "verified"


class RecordStatus(str, Enum):
    """Lifecycle of soft-deletable documents (posts and comments)"""
    ACTIVE = "active"
    DELETED = "deleted"


class Document(BaseModel):
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class Attachment(Document):
    url: str = Field(..., min_length=1)
    type: AttachmentType
    filename: Optional[str] = None


def _clean_tags(tags: Optional[List[str]]) -> List[str]:
    return [t.strip() for t in (tags or []) if t and t.strip()]


class User(Document):
    """
    Users collection schema
    Roles:
    - Admin: moderation and full control
    - Faculty: may post in Official and verify content
    - Student: regular member
    """
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="SHA256 password hash")
    role: Role = Role.STUDENT
    department: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1, le=4)
    profile_picture: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    is_active: bool = True

    @model_validator(mode="after")
    def _year_for_students_only(self):
        if self.role != Role.STUDENT:
            self.year = None
        return self


class Session(Document):
    """Login sessions bound to a user"""
    user_id: ObjectId
    token: str
    expires_at: datetime


class Post(Document):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    section: Section
    category: Category = Category.GENERAL
    author: Optional[ObjectId] = None
    is_anonymous: bool = False
    attachments: List[Attachment] = []
    tags: List[str] = []
    upvotes: List[ObjectId] = []
    upvote_count: int = 0
    comment_count: int = 0
    is_verified: bool = False
    is_misinformation: bool = False
    verified_by: Optional[ObjectId] = None
    is_pinned: bool = False
    status: RecordStatus = RecordStatus.ACTIVE

    @field_validator("tags")
    @classmethod
    def _tags(cls, v):
        return _clean_tags(v)

    @model_validator(mode="after")
    def _anonymity(self):
        if self.section == Section.ANONYMOUS:
            self.is_anonymous = True
        if self.is_anonymous:
            self.author = None
        elif self.author is None:
            raise ValueError("Author is required unless the post is anonymous")
        return self


class Comment(Document):
    post: ObjectId
    author: Optional[ObjectId] = None
    content: str = Field(..., min_length=1, max_length=5000)
    is_anonymous: bool = False
    upvotes: List[ObjectId] = []
    upvote_count: int = 0
    is_verified: bool = False
    verified_by: Optional[ObjectId] = None
    status: RecordStatus = RecordStatus.ACTIVE

    @model_validator(mode="after")
    def _author_unless_anonymous(self):
        if self.is_anonymous:
            self.author = None
        elif self.author is None:
            raise ValueError("Author is required unless the comment is anonymous")
        return self


class Notification(Document):
    """User notifications, one row per triggering event"""
    recipient: ObjectId
    sender: Optional[ObjectId] = None
    type: NotificationType
    post: Optional[ObjectId] = None
    comment: Optional[ObjectId] = None
    message: str = Field(..., min_length=1)
    is_read: bool = False


# Request bodies

class RegisterBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = Role.STUDENT
    department: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1, le=4)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1, le=4)
    profile_picture: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)


class PostCreateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    section: Section
    category: Category = Category.GENERAL
    tags: List[str] = []
    attachments: List[Attachment] = []
    is_anonymous: bool = False

    @field_validator("tags")
    @classmethod
    def _tags(cls, v):
        return _clean_tags(v)


class PostUpdateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[Category] = None
    tags: Optional[List[str]] = None
    attachments: Optional[List[Attachment]] = None

    @field_validator("tags")
    @classmethod
    def _tags(cls, v):
        return None if v is None else _clean_tags(v)


class PostVerifyBody(BaseModel):
    is_verified: bool
    is_misinformation: bool = False


class CommentCreateBody(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    is_anonymous: bool = False


class CommentUpdateBody(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class AdminUserUpdateBody(BaseModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None
