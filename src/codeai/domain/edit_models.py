from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOG = logging.getLogger("codeai.extract")

EditAction = Literal["create", "update"]
FileOpStatus = Literal["pending", "writing", "done", "error"]

# Allowed FileOp transitions; terminal states have no successors.
FILE_OP_TRANSITIONS: Dict[str, List[str]] = {
    "pending": ["writing"],
    "writing": ["done", "error"],
    "done": [],
    "error": [],
}


class FileEdit(BaseModel):
    """One full-file replacement requested by the assistant."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    content: str = Field(min_length=1)
    action: EditAction = "update"

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> str:
        if value is None:
            return "update"
        tag = str(value).strip().lower()
        if tag in ("create", "update"):
            return tag
        LOG.warning("edit_action_unknown", extra={"action": str(value)[:40]})
        return "update"


class FileEditBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: List[FileEdit]

    def __len__(self) -> int:
        return len(self.files)


class FileOp(BaseModel):
    path: str
    status: FileOpStatus = "pending"


class RemoteFileHandle(BaseModel):
    path: str
    sha: Optional[str] = None
    content: str = ""


class WriteResult(BaseModel):
    success: bool
    commit: Optional[Dict[str, Any]] = None
    status_code: int = 200
    message: str = ""


class ApplyResult(BaseModel):
    success_count: int = 0
    error_count: int = 0
    commit_references: List[str] = []
    last_success: Optional[FileEdit] = None


class RepoEntry(BaseModel):
    name: str
    path: str
    type: str


class RepoConfig(BaseModel):
    token: str
    owner: str
    name: str
    branch: str = "main"

    @property
    def commits_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}/commits/{self.branch}"


Role = Literal["user", "assistant"]


class ChatMessage(BaseModel):
    message_id: str
    role: Role
    content: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z"))


class Attachment(BaseModel):
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext if dot and ext else "png"
