"""
Assembly of ``WorkflowRecord`` from raw subject data.  Pure functions.

Rules:
    - Missing text renders as the placeholder.
    - Display name is "company contractor" unless the company is internal.
    - Numeric fields that are missing or not numbers count as 0.
    - amount = days * rate + additional cost.
    - A month label without a four-digit year gets the approval year.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from booking_workflow.domain.types import PLACEHOLDER, SubjectData, WorkflowRecord

_YEAR = re.compile(r"\d{4}")


def _text(value: str | None) -> str:
    if value is None or not str(value).strip():
        return PLACEHOLDER
    return str(value).strip()


def _decimal(value: Decimal | int | str | None) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal("0")
    return number if number.is_finite() else Decimal("0")


def display_name(
    contractor_name: str | None,
    company_name: str | None,
    internal_company_pattern: str | None = None,
) -> str:
    """Combine trading and contractor names the way the booking form shows them."""
    contractor = _text(contractor_name)
    company = _text(company_name)
    if company != PLACEHOLDER and internal_company_pattern:
        if re.search(internal_company_pattern, company, re.IGNORECASE):
            company = PLACEHOLDER
    if company == PLACEHOLDER:
        return contractor
    return f"{company} {contractor if contractor != PLACEHOLDER else ''}".strip()


def month_label(service_month: str | None, approved_at: datetime) -> str:
    month = _text(service_month)
    if month != PLACEHOLDER and not _YEAR.search(month):
        return f"{month} {approved_at.year}"
    return month


def format_approval_date(approved_at: datetime) -> str:
    """``D/M/YYYY, HH:MM:SS`` in UTC."""
    if approved_at.tzinfo is None:
        approved_at = approved_at.replace(tzinfo=timezone.utc)
    at = approved_at.astimezone(timezone.utc)
    return f"{at.day}/{at.month}/{at.year}, {at:%H:%M:%S}"


def build_workflow_record(
    subject: SubjectData,
    approver_name: str,
    approved_at: datetime,
    internal_company_pattern: str | None = None,
) -> WorkflowRecord:
    """Project ``subject`` plus approval facts into the flat record."""
    days_count = int(_decimal(subject.service_days_count))
    rate = _decimal(subject.service_rate_per_day)
    additional = _decimal(subject.additional_cost)

    return WorkflowRecord(
        name=display_name(
            subject.contractor_name, subject.company_name, internal_company_pattern,
        ),
        service_description=_text(subject.service_description),
        amount=days_count * rate + additional,
        department=_text(subject.department_name),
        department_2=_text(subject.department_2),
        number_of_days=days_count,
        month=month_label(subject.service_month, approved_at),
        days=_text(subject.service_days),
        service_rate_per_day=rate,
        additional_cost=additional,
        additional_cost_reason=(subject.additional_cost_reason or "").strip(),
        approver_name=approver_name,
        booked_by=_text(subject.booked_by),
        approval_date=format_approval_date(approved_at),
    )
