"""Policy mapping inquiry events onto the linked lead's pipeline status.

A later pipeline stage is never moved back by an earlier-stage inquiry event,
and applying the same event twice yields the same status.
"""

from __future__ import annotations

from typing import Literal

LeadStatus = Literal["New", "Contacted", "Qualified", "Proposal", "Negotiation", "Converted", "Lost"]
InquiryStatus = Literal["New", "Quoted", "Approved", "Scheduled", "Fulfilled", "Cancelled"]

LEAD_STATUSES: tuple[str, ...] = ("New", "Contacted", "Qualified", "Proposal", "Negotiation", "Converted", "Lost")
INQUIRY_STATUSES: tuple[str, ...] = ("New", "Quoted", "Approved", "Scheduled", "Fulfilled", "Cancelled")

_QUOTE_PROMOTABLE = {"New", "Contacted"}


def next_lead_status(inquiry_status: str, current_lead_status: str) -> str:
    if inquiry_status == "Quoted":
        return "Proposal" if current_lead_status in _QUOTE_PROMOTABLE else current_lead_status
    if inquiry_status in {"Approved", "Scheduled"}:
        return "Negotiation"
    if inquiry_status == "Fulfilled":
        return "Converted"
    return current_lead_status
