from enum import StrEnum


class LeadSource(StrEnum):
    WEBSITE = "WEBSITE"
    LINKEDIN = "LINKEDIN"
    REFERRAL = "REFERRAL"
    COLD_CALL = "COLD_CALL"
    TRADE_SHOW = "TRADE_SHOW"
    PARTNER = "PARTNER"
    EMAIL_CAMPAIGN = "EMAIL_CAMPAIGN"
    OTHER = "OTHER"


class LeadPipelineStage(StrEnum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"


class LeadStatus(StrEnum):
    NEW = "NEW"
    ATTEMPTING_CONTACT = "ATTEMPTING_CONTACT"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    NURTURING = "NURTURING"
    DISQUALIFIED = "DISQUALIFIED"
    CONVERTED = "CONVERTED"


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ClientStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    CHURNED = "CHURNED"
    PAUSED = "PAUSED"


class DealStage(StrEnum):
    QUALIFICATION = "QUALIFICATION"
    NEEDS_ANALYSIS = "NEEDS_ANALYSIS"
    VALUE_PROPOSITION = "VALUE_PROPOSITION"
    PROPOSAL_PRICE_QUOTE = "PROPOSAL_PRICE_QUOTE"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"


CLOSED_DEAL_STAGES = frozenset({DealStage.CLOSED_WON, DealStage.CLOSED_LOST})


class TaskType(StrEnum):
    GENERAL = "GENERAL"
    CALL = "CALL"
    EMAIL = "EMAIL"
    FOLLOW_UP = "FOLLOW_UP"
    PROPOSAL = "PROPOSAL"
    CONTRACT = "CONTRACT"


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ActivityType(StrEnum):
    LEAD_CONVERTED = "LEAD_CONVERTED"
    DEAL_CREATED = "DEAL_CREATED"
    DEAL_STAGE_CHANGED = "DEAL_STAGE_CHANGED"
    DEAL_ARCHIVED = "DEAL_ARCHIVED"
    DEAL_RESTORED = "DEAL_RESTORED"
    TASK_CREATED = "TASK_CREATED"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    NOTE_ADDED = "NOTE_ADDED"
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
