from __future__ import annotations

from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.settings import settings

Difficulty = Literal["basic", "intermediate", "advanced"]
ImportMode = Literal["append", "replace"]


def _clean_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValueError("name must not be empty")
    if len(name) > settings.tree_name_max_length:
        raise ValueError(f"name must be at most {settings.tree_name_max_length} characters")
    return name


NodeName = Annotated[str, AfterValidator(_clean_name)]


# ── Submitted tree (desired state) ───────────────────────────────────────────

class SubmittedTopic(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: NodeName
    display_order: int | None = Field(default=None, ge=0)
    description: str | None = Field(default=None, max_length=2000)
    difficulty: Difficulty | None = None
    topic_type: str | None = Field(default=None, max_length=64)


class SubmittedCategory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: NodeName
    display_order: int | None = Field(default=None, ge=0)
    subcategories: list[SubmittedCategory] = Field(default_factory=list)
    topics: list[SubmittedTopic] = Field(default_factory=list)

    def levels(self) -> int:
        return 1 + max((child.levels() for child in self.subcategories), default=0)


class SubmittedTree(BaseModel):
    model_config = ConfigDict(extra="ignore")

    categories: list[SubmittedCategory] = Field(default_factory=list)
    # Optional optimistic-concurrency token; omitted means last writer wins.
    version: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_depth(self) -> SubmittedTree:
        deepest = max((cat.levels() for cat in self.categories), default=0)
        if deepest > settings.tree_max_depth:
            raise ValueError(f"tree is {deepest} levels deep; at most {settings.tree_max_depth} are supported")
        return self


# ── Persisted tree (read model) ──────────────────────────────────────────────

class TopicNode(BaseModel):
    id: str
    name: str
    display_order: int
    description: str | None = None
    difficulty: str | None = None
    topic_type: str | None = None


class CategoryNode(BaseModel):
    id: str
    name: str
    display_order: int
    subcategories: list[CategoryNode] = Field(default_factory=list)
    topics: list[TopicNode] = Field(default_factory=list)


class SubjectTree(BaseModel):
    subject_id: str
    version: int
    categories: list[CategoryNode] = Field(default_factory=list)


class NodeChanges(BaseModel):
    inserted: int = 0
    updated: int = 0
    revived: int = 0
    deleted: int = 0


class ChangeSummary(BaseModel):
    categories: NodeChanges = Field(default_factory=NodeChanges)
    topics: NodeChanges = Field(default_factory=NodeChanges)


class TreeUpdateResponse(BaseModel):
    tree: SubjectTree
    changes: ChangeSummary


# ── CSV import ───────────────────────────────────────────────────────────────

class CSVImportRequest(BaseModel):
    csv_content: str = Field(min_length=1)
    mode: ImportMode = "append"

    @field_validator("csv_content")
    @classmethod
    def _check_size(cls, value: str) -> str:
        if len(value.encode("utf-8")) > settings.csv_max_bytes:
            raise ValueError(f"CSV must be at most {settings.csv_max_bytes} bytes")
        return value


class ImportCounts(BaseModel):
    categories: int = 0
    topics: int = 0


class ImportRowError(BaseModel):
    row: int
    message: str


class CSVImportResponse(BaseModel):
    success: bool
    code: str | None = None
    imported: ImportCounts = Field(default_factory=ImportCounts)
    created: ImportCounts = Field(default_factory=ImportCounts)
    errors: list[ImportRowError] = Field(default_factory=list)


class SubjectImportCounts(ImportCounts):
    subjects: int = 0


class SubjectsCSVImportResponse(CSVImportResponse):
    """Report of a multi-subject import; ``created.subjects`` counts subjects the import added."""

    imported: SubjectImportCounts = Field(default_factory=SubjectImportCounts)
    created: SubjectImportCounts = Field(default_factory=SubjectImportCounts)


# ── Subject ──────────────────────────────────────────────────────────────────

class SubjectCreateRequest(BaseModel):
    name: NodeName
    description: str | None = Field(default=None, max_length=2000)
    emoji: str | None = Field(default=None, max_length=16)
    color: str | None = Field(default=None, max_length=32)
    display_order: int = Field(default=0, ge=0)


class SubjectResponse(BaseModel):
    id: str
    name: str
    description: str | None
    emoji: str | None
    color: str | None
    display_order: int
    tree_version: int
