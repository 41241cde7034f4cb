# app/services/lead_state_machine.py
"""
Lead lifecycle rules.

    pending --placed--> in_progress --+--> qualified   (score >= threshold)
       ^                              +--> rejected    (score < threshold, failed/error)
       +------------ no-answer -------+

Leads without a phone are rejected on ingestion and never dialled.

Every function here is pure: it takes a Lead and returns a new Lead (or the
same one when nothing changes). The only side effect is the optional
`qualify` callback, which may raise QualificationError; that error is left
for the caller to handle so a failed scoring never turns into a made-up
score.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from app.schemas.batch import CallHandle, CallStatus, Lead, LeadStatus, QualificationResult


NO_CONTACT_SUMMARY = "no contact method"
NO_ANSWER_SUMMARY = "no answer"
CALL_FAILED_SUMMARY = "Call failed to complete"
FAILURE_STATUSES = frozenset({"failed", "error"})

Qualifier = Callable[[str], QualificationResult]


def has_phone(lead: Lead) -> bool:
    return bool(lead.phone and lead.phone.strip())


def ingest(lead: Lead) -> Lead:
    """New lead entering a batch: pending if dialable, otherwise rejected."""
    if not has_phone(lead):
        return lead.model_copy(
            update={
                "status": LeadStatus.REJECTED,
                "call_id": None,
                "call_summary": NO_CONTACT_SUMMARY,
            }
        )
    return lead.model_copy(update={"status": LeadStatus.PENDING, "phone": lead.phone.strip()})


def apply_call_placed(lead: Lead, handle: CallHandle, now: datetime) -> Lead:
    """A new call cycle starts; the previous call's outcome is dropped."""
    return lead.model_copy(
        update={
            "status": LeadStatus.IN_PROGRESS,
            "call_id": handle.call_id,
            "call_started_at": now,
            "call_ended_at": None,
            "placement_error": None,
            "call_transcript": None,
            "call_concatenated_transcript": None,
            "call_summary": None,
            "call_score": None,
            "call_duration": None,
        }
    )


def apply_placement_failed(lead: Lead, error: str) -> Lead:
    """Status is untouched; the lead only remembers why it was not dialled."""
    return lead.model_copy(update={"placement_error": error})


def is_failure(call_status: CallStatus) -> bool:
    return (call_status.status or "").lower() in FAILURE_STATUSES


def apply_call_status(
    lead: Lead,
    call_status: CallStatus,
    qualify: Qualifier,
    now: datetime,
    threshold: float = 3.0,
) -> Lead:
    """
    Advance an in-progress lead from a provider status report.

    Order of evaluation: explicit failure, then no-answer, then scoring.
    Anything not in progress (or without a call id) is returned unchanged.
    """
    if not lead.awaiting_call_result:
        return lead

    if is_failure(call_status):
        return lead.model_copy(
            update={
                "status": LeadStatus.REJECTED,
                "call_score": 0,
                "call_summary": call_status.error_message or CALL_FAILED_SUMMARY,
                "call_ended_at": now,
            }
        )

    if not call_status.completed:
        return lead

    concatenated = call_status.concatenated_transcript or ""
    outcome = {
        "call_concatenated_transcript": concatenated,
        "call_transcript": call_status.transcript or "",
        "call_duration": call_status.duration_seconds or 0,
        "call_ended_at": now,
    }

    if call_status.answered_by == "no-answer":
        outcome.update(
            status=LeadStatus.PENDING,
            call_score=None,
            call_summary=NO_ANSWER_SUMMARY,
        )
        return lead.model_copy(update=outcome)

    result = qualify(concatenated)
    outcome.update(
        status=qualification_status(result.score, threshold),
        call_score=result.score,
        call_summary=result.summary,
        call_transcript=result.transcript,
    )
    return lead.model_copy(update=outcome)


def qualification_status(score: float, threshold: float = 3.0) -> LeadStatus:
    return LeadStatus.QUALIFIED if score >= threshold else LeadStatus.REJECTED
