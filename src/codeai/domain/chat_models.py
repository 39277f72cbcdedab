from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EndpointRequest(BaseModel):
    """Body accepted by the multiplexed chat endpoint.

    ``messages`` carries the chat history for ``chat``, a directory path for
    ``list-files``, a file path for ``read-file`` and a ``WriteFileRequest``
    shaped object for ``write-file``.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: Any = None
    github_token: str = Field(default="", alias="githubToken")
    repo_owner: str = Field(default="", alias="repoOwner")
    repo_name: str = Field(default="", alias="repoName")
    action: Optional[str] = "chat"


class WriteFileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(min_length=1)
    content: str
    sha: Optional[str] = None
    commit_message: Optional[str] = Field(default=None, alias="commitMessage")


class ListFilesResponse(BaseModel):
    files: List[Dict[str, Any]]


class ReadFileResponse(BaseModel):
    content: str
    sha: str
    path: str


class WriteFileResponse(BaseModel):
    success: bool
    commit: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: str
