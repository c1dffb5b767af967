from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

IssueCategory = Literal[
    "slop_word",
    "slop_phrase",
    "sentence_too_long",
    "wall_of_text",
    "missing_concrete",
    "missing_local",
    "invented_fact",
    "grammar",
    "other",
]

KNOWN_CATEGORIES = frozenset(get_args(IssueCategory))


class Article(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    content: str
    excerpt: str

    def full_text(self) -> str:
        return f"{self.title} {self.excerpt} {self.content}"


class ReviewIssue(BaseModel):
    """One concrete finding from the REVIEW stage.

    Models answer with ``type``/``fix`` or ``category``/``detail`` keys; both
    load into the issue ``category`` and its ``detail`` (the fix instruction).
    Categories outside the known list are kept as ``other``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: IssueCategory = Field(
        validation_alias=AliasChoices("type", "category"), serialization_alias="type"
    )
    detail: str = Field(
        validation_alias=AliasChoices("fix", "detail"), serialization_alias="fix", min_length=1
    )
    location: str | None = None
    text: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _fold_unknown_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            normalized = value.strip().lower()
            return normalized if normalized in KNOWN_CATEGORIES else "other"
        return value


class ReviewResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passed: bool = Field(alias="pass")
    issues: list[ReviewIssue] = Field(default_factory=list)
