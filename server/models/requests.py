"""
Pydantic request models for API validation
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from database.models import SessionStatus

MAX_TITLE_LENGTH = 200
MAX_LABEL_LENGTH = 100
MAX_OPTIONS = 50


def _clean_label(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Option label cannot be empty")
    v = v.strip()
    if len(v) > MAX_LABEL_LENGTH:
        raise ValueError(f"Option label too long (max {MAX_LABEL_LENGTH} characters)")
    return v


class SessionCreateRequest(BaseModel):
    title: str
    options: List[str]
    description: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.PENDING

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Title cannot be empty")
        if len(v) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title too long (max {MAX_TITLE_LENGTH} characters)")
        return v.strip()

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one option is required")
        if len(v) > MAX_OPTIONS:
            raise ValueError(f"Too many options (max {MAX_OPTIONS})")
        labels = [_clean_label(label) for label in v]
        if len(set(labels)) != len(labels):
            raise ValueError("Option labels must be unique")
        return labels


class SessionUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[SessionStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @model_validator(mode="after")
    def require_field(self):
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class VoteCastRequest(BaseModel):
    option: str

    @field_validator("option")
    @classmethod
    def validate_option(cls, v: str) -> str:
        return _clean_label(v)


class OptionCreateRequest(BaseModel):
    label: str

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        return _clean_label(v)


class OptionRenameRequest(BaseModel):
    new_label: str

    @field_validator("new_label")
    @classmethod
    def validate_new_label(cls, v: str) -> str:
        return _clean_label(v)
