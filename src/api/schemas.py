"""Request and response models for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FrameworkId = Literal["react", "typescript", "java", "spring-boot", "flutter", "ftl"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IndexRepoRequest(CamelModel):
    """Full repository indexing request."""

    repo_url: str = Field(..., min_length=1, description="Clone URL, file:// URL or local directory")
    token: str = Field(..., min_length=1, description="Access token used for cloning")
    branch: Optional[str] = Field(None, description="Branch to index (default: main)")
    framework: Optional[FrameworkId] = Field(None, description="Skip detection and use this framework")


class IncrementalIndexRequest(IndexRepoRequest):
    """Re-index only the listed files."""

    changed_files: List[str] = Field(..., description="Repository-relative paths of changed or deleted files")


class ForceIndexRequest(CamelModel):
    """Full re-index of a repository indexed before."""

    repo_id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    branch: Optional[str] = None
    framework: Optional[FrameworkId] = None


class ReviewRequest(CamelModel):
    """Pull-request review request."""

    pr_url: str = Field(..., min_length=1, description="Bitbucket pull request URL")
    token: str = Field(..., min_length=1)
    post_comments: bool = Field(True, description="Post findings back to the pull request")


class IndexResponse(CamelModel):
    index_id: str


class ReviewResponse(CamelModel):
    review_id: str


class MessageResponse(CamelModel):
    message: str


class JobListResponse(CamelModel):
    jobs: List[Dict[str, Any]]
    total: int
    next_offset: Optional[int] = None
