import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=320, unique=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    name: str = Field(min_length=1, max_length=200, index=True)
    description: str | None = Field(default=None, sa_column=Column(Text))
    owner_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ProjectMembership(SQLModel, table=True):
    __tablename__ = "project_memberships"
    __table_args__ = (UniqueConstraint("project_id", "user_id"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    project_id: str = Field(foreign_key="projects.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str = Field(default="viewer", regex="^(viewer|editor|owner)$")
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    project_id: str = Field(foreign_key="projects.id", index=True)
    title: str = Field(max_length=200)
    description: str | None = Field(default=None, sa_column=Column(Text))
    label: str | None = Field(default=None, max_length=40)
    labels_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(default="Backlog", index=True)
    position: int = Field(default=0)
    blocked_note: str | None = Field(default=None, sa_column=Column(Text))
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    archived_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class TaskBlockedFollowUp(SQLModel, table=True):
    __tablename__ = "task_blocked_follow_ups"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ContextCard(SQLModel, table=True):
    __tablename__ = "context_cards"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    project_id: str = Field(foreign_key="projects.id", index=True)
    title: str = Field(max_length=120)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    color: str = Field(max_length=16)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class AttachmentBase(SQLModel):
    """Columns shared by task and context card attachments"""

    kind: str = Field(regex="^(link|file)$")
    name: str = Field(max_length=255)
    url: str | None = Field(default=None, max_length=2048)
    storage_key: str | None = Field(default=None, max_length=512, index=True)
    mime_type: str | None = Field(default=None, max_length=255)
    size_bytes: int | None = Field(default=None)


class TaskAttachment(AttachmentBase, table=True):
    __tablename__ = "task_attachments"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ContextCardAttachment(AttachmentBase, table=True):
    __tablename__ = "context_card_attachments"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    card_id: str = Field(foreign_key="context_cards.id", index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class GoogleCalendarCredential(SQLModel, table=True):
    __tablename__ = "google_calendar_credentials"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    user_id: str = Field(foreign_key="users.id", unique=True)
    access_token: str | None = Field(default=None, sa_column=Column(Text))
    refresh_token: str = Field(sa_column=Column(Text, nullable=False))
    token_type: str | None = Field(default=None, max_length=40)
    scope: str | None = Field(default=None, sa_column=Column(Text))
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
