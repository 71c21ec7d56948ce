from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from salesdesk.crm.enums import (
    ClientStatus,
    DealStage,
    LeadPipelineStage,
    LeadSource,
    LeadStatus,
    Priority,
    TaskType,
)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _unique_tags(value: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for tag in value:
        cleaned = tag.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class _PatchModel(BaseModel):
    """Partial update payload; fields listed in ``required_fields`` may be omitted but never nulled."""

    required_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> _PatchModel:
        nulled = sorted(
            name for name in self.model_fields_set if name in self.required_fields and getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    full_name: str
    role: str


class LeadCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    company_name: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    mobile: str | None = Field(default=None, max_length=20)
    source: LeadSource = LeadSource.OTHER
    source_details: str | None = Field(default=None, max_length=500)
    pipeline_stage: LeadPipelineStage = LeadPipelineStage.NEW
    status: LeadStatus = LeadStatus.NEW
    priority: Priority = Priority.MEDIUM
    score: int = Field(default=0, ge=0, le=100)
    tags: list[str] = Field(default_factory=list)
    estimated_value: Decimal | None = Field(default=None, ge=0)
    next_follow_up_at: datetime | None = None
    initial_notes: str | None = Field(default=None, max_length=2000)
    owner_id: UUID | None = None

    @field_validator("email", "company_name", "mobile", mode="before")
    @classmethod
    def blank_strings_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: list[str]) -> list[str]:
        return _unique_tags(value)

    @field_validator("status")
    @classmethod
    def reject_converted_status(cls, value: LeadStatus) -> LeadStatus:
        if value == LeadStatus.CONVERTED:
            raise ValueError("CONVERTED is set by lead conversion only")
        return value


class LeadUpdate(_PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"name", "source", "pipeline_stage", "status", "priority", "score", "tags"}
    )

    name: str | None = Field(default=None, min_length=2, max_length=100)
    company_name: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    mobile: str | None = Field(default=None, max_length=20)
    source: LeadSource | None = None
    source_details: str | None = Field(default=None, max_length=500)
    pipeline_stage: LeadPipelineStage | None = None
    status: LeadStatus | None = None
    priority: Priority | None = None
    score: int | None = Field(default=None, ge=0, le=100)
    tags: list[str] | None = None
    estimated_value: Decimal | None = Field(default=None, ge=0)
    next_follow_up_at: datetime | None = None
    initial_notes: str | None = Field(default=None, max_length=2000)

    @field_validator("email", "company_name", "mobile", mode="before")
    @classmethod
    def blank_strings_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _unique_tags(value)


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    company_name: str | None
    email: str | None
    mobile: str | None
    source: str
    source_details: str | None
    pipeline_stage: str
    status: str
    priority: str
    score: int
    tags: list[str]
    owner_id: UUID
    owner: UserSummary | None = None
    is_converted: bool
    converted_at: datetime | None
    converted_client_id: UUID | None
    estimated_value: Decimal | None
    last_contacted_at: datetime | None
    next_follow_up_at: datetime | None
    initial_notes: str | None
    created_at: datetime
    updated_at: datetime


class LeadListRead(BaseModel):
    leads: list[LeadRead]
    total: int
    count_by_stage: dict[str, int]


class LeadStatsRead(BaseModel):
    total: int
    converted: int
    by_status: dict[str, int]
    by_source: dict[str, int]
    by_priority: dict[str, int]
    by_stage: dict[str, int]


class LeadConvertRequest(BaseModel):
    estimated_value: Decimal = Field(ge=0)


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_name: str
    primary_contact: str
    email: str | None
    mobile: str | None
    status: str
    lifetime_value: Decimal
    estimated_value: Decimal | None
    industry: str | None
    website: str | None
    address: str | None
    account_manager_id: UUID
    created_at: datetime
    updated_at: datetime


class ClientSummaryRead(ClientRead):
    account_manager: UserSummary | None = None
    total_deals_value: Decimal
    active_deals_count: int


class LeadConversionRead(BaseModel):
    lead: LeadRead
    client: ClientRead


class ClientUpdate(_PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"company_name", "primary_contact", "status", "lifetime_value"}
    )

    company_name: str | None = Field(default=None, min_length=2, max_length=200)
    primary_contact: str | None = Field(default=None, min_length=2, max_length=100)
    email: EmailStr | None = None
    mobile: str | None = Field(default=None, max_length=20)
    status: ClientStatus | None = None
    industry: str | None = Field(default=None, max_length=100)
    website: AnyHttpUrl | None = None
    address: str | None = Field(default=None, max_length=500)
    estimated_value: Decimal | None = Field(default=None, ge=0)
    lifetime_value: Decimal | None = Field(default=None, ge=0)

    @field_validator("email", "mobile", "website", "industry", "address", mode="before")
    @classmethod
    def blank_strings_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)


class DealCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    value: Decimal = Field(ge=0)
    budget: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=1, max_length=10)
    deal_type: str | None = Field(default=None, max_length=50)
    industry: str | None = Field(default=None, max_length=100)
    stage: DealStage = DealStage.QUALIFICATION
    probability: int = Field(default=0, ge=0, le=100)
    expected_close_date: datetime | None = None
    next_steps: str | None = Field(default=None, max_length=1000)
    owner_id: UUID | None = None


class DealUpdate(_PatchModel):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"title", "value", "currency", "stage", "probability", "owner_id"}
    )

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    value: Decimal | None = Field(default=None, ge=0)
    budget: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=1, max_length=10)
    deal_type: str | None = Field(default=None, max_length=50)
    industry: str | None = Field(default=None, max_length=100)
    stage: DealStage | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: datetime | None = None
    next_steps: str | None = Field(default=None, max_length=1000)
    owner_id: UUID | None = None


class DealArchiveRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    value: Decimal
    budget: Decimal | None
    currency: str
    deal_type: str | None
    industry: str | None
    stage: str
    probability: int
    expected_close_date: datetime | None
    actual_close_date: datetime | None
    next_steps: str | None
    client_id: UUID
    owner_id: UUID
    owner: UserSummary | None = None
    is_deleted: bool
    deleted_at: datetime | None
    deleted_by_id: UUID | None
    deletion_reason: str | None
    created_at: datetime
    updated_at: datetime


class DealBoardRead(BaseModel):
    deals: list[DealRead]
    deals_by_stage: dict[str, list[DealRead]]
    stage_values: dict[str, Decimal]
    total_value: Decimal
    total: int


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    priority: Priority = Priority.MEDIUM
    type: TaskType = TaskType.GENERAL
    due_date: datetime
    assigned_to_id: UUID | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    priority: str
    type: str
    status: str
    due_date: datetime
    assigned_to_id: UUID
    client_id: UUID
    created_at: datetime


class MeetingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    location: str | None = Field(default=None, max_length=255)
    meeting_url: AnyHttpUrl | None = None
    start_time: datetime
    end_time: datetime | None = None

    @field_validator("meeting_url", mode="before")
    @classmethod
    def blank_url_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def end_after_start(self) -> MeetingCreate:
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ClientRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_name: str


class MeetingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    location: str | None
    meeting_url: str | None
    start_time: datetime
    end_time: datetime
    organizer_id: UUID
    client_id: UUID | None
    lead_id: UUID | None
    client: ClientRef | None = None
    created_at: datetime


class NoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    is_pinned: bool = False


class NoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content: str
    is_pinned: bool
    author_id: UUID
    client_id: UUID
    created_at: datetime


class DocumentLinkCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: AnyHttpUrl
    category: str | None = Field(default=None, max_length=100)


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str
    file_type: str
    category: str | None
    is_link: bool
    client_id: UUID
    created_at: datetime


class ExternalLinkCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    url: AnyHttpUrl


class ExternalLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    url: str
    client_id: UUID
    created_at: datetime


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    title: str
    description: str | None
    created_by_id: UUID
    client_id: UUID | None
    lead_id: UUID | None
    created_at: datetime


class ClientDetailRead(ClientSummaryRead):
    origin_lead_id: UUID | None
    deals: list[DealRead]
    tasks: list[TaskRead]
    meetings: list[MeetingRead]
    notes: list[NoteRead]
    documents: list[DocumentRead]
    external_links: list[ExternalLinkRead]
    activities: list[ActivityRead]
