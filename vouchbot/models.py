from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Union


@dataclass(frozen=True)
class ChatUser:
    id: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    is_bot: bool = False

    @property
    def tag(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.display_name or f"User #{self.id}"


@dataclass(frozen=True)
class ResolvedUser:
    user: ChatUser

    @property
    def id(self) -> int:
        return self.user.id

    @property
    def label(self) -> str:
        return self.user.tag


@dataclass(frozen=True)
class UnknownUser:
    user_id: int

    @property
    def id(self) -> int:
        return self.user_id

    @property
    def label(self) -> str:
        return "Unknown User"


# Result of a directory lookup; every consumer handles both variants.
UserRef = Union[ResolvedUser, UnknownUser]


@dataclass(frozen=True)
class Attachment:
    file_id: str
    kind: str  # "photo" | "document"
    mime_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        if self.kind == "photo":
            return True
        return bool(self.mime_type and self.mime_type.startswith("image/"))


@dataclass
class InboundMessage:
    """Transport-neutral view of one inbound text or caption message."""

    message_id: int
    chat_id: int
    author: ChatUser
    text: str
    mentions: List[ChatUser] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def proof(self) -> Optional[Attachment]:
        for attachment in self.attachments:
            if attachment.is_image:
                return attachment
        return None


@dataclass
class VouchRecord:
    id: str
    subject_id: int
    author_id: int
    points: int
    comment: str
    created_at: datetime
    deleted: bool = False


@dataclass(frozen=True)
class Tally:
    user_id: int
    count: int


@dataclass(frozen=True)
class NoticeField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class Notice:
    """A titled block of text, the unit every reply is rendered from."""

    title: str
    description: str = ""
    tone: str = "ok"  # "ok" | "error" | "info" | "warn"
    fields: tuple = ()
    footer: Optional[str] = None
    image_url: Optional[str] = None

    def add_field(self, name: str, value: str, inline: bool = False) -> "Notice":
        return replace(self, fields=self.fields + (NoticeField(name, value, inline),))

    def append_line(self, line: str) -> "Notice":
        description = f"{self.description}\n{line}" if self.description else line
        return replace(self, description=description)


@dataclass(frozen=True)
class PageControls:
    """Previous/next button state for one paged view."""

    view_id: str
    prev_disabled: bool
    next_disabled: bool
