from __future__ import annotations

import pytest

from buildmart.inquiries.lifecycle import INQUIRY_STATUSES, LEAD_STATUSES, next_lead_status


@pytest.mark.parametrize(
    ("inquiry_status", "lead_status", "expected"),
    [
        ("New", "New", "New"),
        ("New", "Contacted", "Contacted"),
        ("New", "Negotiation", "Negotiation"),
        ("Quoted", "New", "Proposal"),
        ("Quoted", "Contacted", "Proposal"),
        ("Quoted", "Qualified", "Qualified"),
        ("Quoted", "Negotiation", "Negotiation"),
        ("Approved", "Proposal", "Negotiation"),
        ("Scheduled", "New", "Negotiation"),
        ("Fulfilled", "Negotiation", "Converted"),
        ("Cancelled", "Proposal", "Proposal"),
    ],
)
def test_next_lead_status_mapping(inquiry_status: str, lead_status: str, expected: str) -> None:
    assert next_lead_status(inquiry_status, lead_status) == expected


@pytest.mark.parametrize("inquiry_status", INQUIRY_STATUSES)
@pytest.mark.parametrize("lead_status", LEAD_STATUSES)
def test_next_lead_status_is_idempotent(inquiry_status: str, lead_status: str) -> None:
    once = next_lead_status(inquiry_status, lead_status)
    assert next_lead_status(inquiry_status, once) == once


def test_quote_never_moves_a_later_stage_back() -> None:
    for lead_status in ("Proposal", "Negotiation", "Converted", "Lost"):
        assert next_lead_status("Quoted", lead_status) == lead_status
