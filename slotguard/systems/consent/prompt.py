"""Human-readable rendering of a booking opportunity."""

from __future__ import annotations

from datetime import date, datetime, time

from slotguard.systems.consent.types import ConfirmationRequest

PROMPT_TITLE = "Booking Confirmation Required"


def parse_date(value: str) -> date:
    """ISO date, or the date part of an ISO datetime."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        return datetime.fromisoformat(value).date()


def parse_time(value: str) -> time:
    return time.fromisoformat(value)


def format_date(value: str) -> str:
    """'2024-12-20' → 'Friday 20 December 2024'."""
    d = parse_date(value)
    return f"{d.strftime('%A')} {d.day} {d.strftime('%B %Y')}"


def format_time(value: str) -> str:
    return parse_time(value).strftime("%H:%M")


def render_prompt(request: ConfirmationRequest, timeout_s: float) -> tuple[str, str]:
    """Return (title, body) for the confirmation surface."""
    body = "\n".join([
        "A driving test slot has been found. Please review and confirm.",
        "",
        f"Current test: {format_date(request.current_test_date)} "
        f"at {format_time(request.current_test_time)}",
        f"New slot: {format_date(request.new_test_date)} "
        f"at {format_time(request.new_test_time)}",
        f"Test centre: {request.test_centre}",
        f"Pupil: {request.pupil_name}",
        "",
        "This will cancel the current test and book the new slot. "
        "It cannot be undone.",
        f"You have {int(timeout_s)} seconds to respond.",
    ])
    return PROMPT_TITLE, body
