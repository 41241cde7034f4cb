# app/schemas/batch.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LeadStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    QUALIFIED = "qualified"
    REJECTED = "rejected"


TERMINAL_LEAD_STATUSES = frozenset({LeadStatus.QUALIFIED, LeadStatus.REJECTED})


class BatchStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class CamelModel(BaseModel):
    """
    snake_case in Python, camelCase on the wire and in stored documents.
    Either spelling is accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Domain ----------


class Lead(CamelModel):
    id: str
    phone: Optional[str] = None

    # Profile columns carried over from the uploaded lead list
    name: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None

    status: LeadStatus = LeadStatus.PENDING

    call_id: Optional[str] = None
    call_started_at: Optional[datetime] = None
    call_ended_at: Optional[datetime] = None

    call_transcript: Optional[str] = None
    call_concatenated_transcript: Optional[str] = None
    call_summary: Optional[str] = None
    call_score: Optional[float] = None
    call_duration: Optional[float] = None  # seconds

    # Last failed placement attempt, cleared once a call is placed
    placement_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_LEAD_STATUSES

    @property
    def awaiting_call_result(self) -> bool:
        return self.status == LeadStatus.IN_PROGRESS and bool(self.call_id)


class Batch(CamelModel):
    id: str
    name: str = ""
    created_at: datetime
    status: BatchStatus = BatchStatus.IN_PROGRESS
    leads: List[Lead] = Field(default_factory=list)

    def find_lead(self, lead_id: str) -> Optional[Lead]:
        for lead in self.leads:
            if lead.id == lead_id:
                return lead
        return None

    def with_recomputed_status(self) -> "Batch":
        """`completed` iff no lead is still in progress."""
        in_flight = any(lead.status == LeadStatus.IN_PROGRESS for lead in self.leads)
        status = BatchStatus.IN_PROGRESS if in_flight else BatchStatus.COMPLETED
        return self.model_copy(update={"status": status})


# ---------- Collaborator payloads ----------


class CallHandle(CamelModel):
    call_id: str


class CallStatus(CamelModel):
    completed: bool = False
    answered_by: Optional[str] = None
    transcript: Optional[str] = None
    concatenated_transcript: Optional[str] = None
    summary: Optional[str] = None
    duration_seconds: Optional[float] = None
    status: Optional[str] = None
    error_message: Optional[str] = None


class QualificationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    score: float = Field(ge=1, le=5)
    summary: str
    transcript: str


# ---------- API ----------


class LeadIn(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    id: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None


class BatchCreatePayload(CamelModel):
    leads: List[LeadIn]
    name: Optional[str] = None


class BatchCreated(CamelModel):
    id: str
    leads_processed: int
    calls_started: int
    status: BatchStatus


class StartCallPayload(CamelModel):
    lead_id: str


class StartCallResponse(CamelModel):
    call_id: str
