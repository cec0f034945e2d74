from __future__ import annotations

import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Optional

logger = logging.getLogger(__name__)

WEEKLY_DAYS = 7
BIWEEKLY_DAYS = 14
LAST_DAY_MAX_FIRST_DAY = 27

WEEKLY_FREQUENCIES = {"weekly", "bi-weekly"}

DAYS_OF_WEEK = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

FREQUENCY_ALIASES = {
    "weekly": "weekly",
    "biweekly": "bi-weekly",
    "byweekly": "bi-weekly",
    "fortnightly": "bi-weekly",
    "semimonthly": "semi-monthly",
    "twicemonthly": "semi-monthly",
    "monthly": "monthly",
}


class RecurrenceValidationError(ValueError):
    """Raised when a recurrence descriptor breaks its field invariants."""


@dataclass(frozen=True)
class RecurrenceDescriptor:
    frequency: Optional[str] = "monthly"
    day_of_week: Optional[str] = None
    day_of_month: Optional[int] = None
    day_of_month_is_last: bool = False
    second_day_of_month: Optional[int] = None
    second_day_of_month_is_last: bool = False
    start_date: Optional[date] = None


def normalize_frequency(value: str | None) -> str | None:
    if not value:
        return None
    key = "".join(ch for ch in value.strip().lower() if ch.isalnum())
    return FREQUENCY_ALIASES.get(key)


def normalize_day_of_week(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in DAYS_OF_WEEK:
        return normalized
    for day_name in DAYS_OF_WEEK:
        if len(normalized) >= 3 and day_name.startswith(normalized):
            return day_name
    return None


def last_day_of_month(reference_month: date) -> int:
    return monthrange(reference_month.year, reference_month.month)[1]


def occurrences_in_month(recurrence: RecurrenceDescriptor, reference_month: date) -> int:
    """Count how many times ``recurrence`` falls inside the month of ``reference_month``.

    Only the year and month of ``reference_month`` are used. Monthly items
    always count once, even when their configured day does not exist in the
    month; only semi-monthly days are checked against the month length.
    Unknown frequencies count once so totals still render.
    """
    frequency = normalize_frequency(recurrence.frequency)
    last_day = last_day_of_month(reference_month)

    if frequency in WEEKLY_FREQUENCIES:
        interval = WEEKLY_DAYS if frequency == "weekly" else BIWEEKLY_DAYS
        first_occurrence = _first_weekday_occurrence(
            reference_month.year,
            reference_month.month,
            recurrence.day_of_week,
        )
        count = 0
        day = first_occurrence
        while day <= last_day:
            count += 1
            day += interval
        return count

    if frequency == "semi-monthly":
        resolved_days = (
            _resolve_payment_day(
                recurrence.day_of_month, recurrence.day_of_month_is_last, last_day
            ),
            _resolve_payment_day(
                recurrence.second_day_of_month,
                recurrence.second_day_of_month_is_last,
                last_day,
            ),
        )
        return sum(1 for day in resolved_days if day is not None and day <= last_day)

    if frequency != "monthly":
        logger.warning(
            "Unknown recurrence frequency %r, counting as monthly.",
            recurrence.frequency,
        )
    return 1


def monthly_equivalent(
    amount: int, recurrence: RecurrenceDescriptor, reference_month: date
) -> int:
    return amount * occurrences_in_month(recurrence, reference_month)


def validate_recurrence(recurrence: RecurrenceDescriptor) -> RecurrenceDescriptor:
    """Return a normalized copy of ``recurrence`` or raise RecurrenceValidationError.

    Values are normalized (frequency aliases, weekday spelling) but never
    corrected: fields that do not belong to the frequency are rejected.
    """
    frequency = normalize_frequency(recurrence.frequency)
    if frequency is None:
        raise RecurrenceValidationError(
            "Frequency must be weekly, bi-weekly, semi-monthly, or monthly."
        )

    day_of_week = None
    if recurrence.day_of_week is not None:
        day_of_week = normalize_day_of_week(recurrence.day_of_week)
        if day_of_week is None:
            raise RecurrenceValidationError("Invalid day of the week.")

    has_first_day = _has_day(recurrence.day_of_month, recurrence.day_of_month_is_last)
    has_second_day = _has_day(
        recurrence.second_day_of_month, recurrence.second_day_of_month_is_last
    )
    _check_day_range(recurrence.day_of_month, "Day of the month")
    _check_day_range(recurrence.second_day_of_month, "Second payment day")

    if frequency in WEEKLY_FREQUENCIES:
        if day_of_week is None:
            raise RecurrenceValidationError(
                "Day of the week is required for this frequency."
            )
        if has_first_day or has_second_day:
            raise RecurrenceValidationError(
                "Weekly schedules cannot set a day of the month."
            )
    else:
        if day_of_week is not None:
            raise RecurrenceValidationError(
                "Day of the week is only used by weekly and bi-weekly schedules."
            )
        _check_single_choice(
            recurrence.day_of_month,
            recurrence.day_of_month_is_last,
            "Day of the month is required for monthly items."
            if frequency == "monthly"
            else "First payment day is required.",
        )

    if frequency == "monthly" and has_second_day:
        raise RecurrenceValidationError(
            "Second payment day is only used by semi-monthly schedules."
        )

    if frequency == "semi-monthly":
        _check_single_choice(
            recurrence.second_day_of_month,
            recurrence.second_day_of_month_is_last,
            "Second payment day is required.",
        )
        if recurrence.day_of_month_is_last:
            raise RecurrenceValidationError("First payment day cannot be the last day.")
        if recurrence.second_day_of_month_is_last:
            if recurrence.day_of_month > LAST_DAY_MAX_FIRST_DAY:
                raise RecurrenceValidationError(
                    "First payment day must be on or before the 27th "
                    "when the second payment is on the last day."
                )
        elif recurrence.second_day_of_month <= recurrence.day_of_month:
            raise RecurrenceValidationError(
                "Second day must be greater than first day."
            )

    return RecurrenceDescriptor(
        frequency=frequency,
        day_of_week=day_of_week,
        day_of_month=recurrence.day_of_month,
        day_of_month_is_last=bool(recurrence.day_of_month_is_last),
        second_day_of_month=recurrence.second_day_of_month,
        second_day_of_month_is_last=bool(recurrence.second_day_of_month_is_last),
        start_date=recurrence.start_date,
    )


def describe_recurrence(recurrence: RecurrenceDescriptor, reference_month: date) -> str:
    frequency = normalize_frequency(recurrence.frequency)
    last_day = last_day_of_month(reference_month)

    if frequency in WEEKLY_FREQUENCIES:
        day_of_week = normalize_day_of_week(recurrence.day_of_week)
        if day_of_week is None:
            return "Weekly" if frequency == "weekly" else "Every other week"
        short_name = day_of_week[:3].capitalize()
        return short_name if frequency == "weekly" else f"Every other {short_name}"

    if frequency == "semi-monthly":
        first_day = _resolve_payment_day(
            recurrence.day_of_month, recurrence.day_of_month_is_last, last_day
        )
        second_day = _resolve_payment_day(
            recurrence.second_day_of_month,
            recurrence.second_day_of_month_is_last,
            last_day,
        )
        labels = [ordinal(day) for day in (first_day, second_day) if day is not None]
        return " & ".join(labels) if labels else "Twice a month"

    if recurrence.day_of_month_is_last:
        return "Last day"
    if recurrence.day_of_month is not None:
        return ordinal(recurrence.day_of_month)
    return "Monthly"


def ordinal(value: int) -> str:
    if 11 <= value % 100 <= 13:
        return f"{value}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(value % 10, "th")
    return f"{value}{suffix}"


def _first_weekday_occurrence(year: int, month: int, day_of_week: str | None) -> int:
    first_weekday = date(year, month, 1).weekday()
    normalized = normalize_day_of_week(day_of_week)
    # Legacy descriptors without a weekday anchor on the 1st.
    target_weekday = (
        DAYS_OF_WEEK.index(normalized) if normalized is not None else first_weekday
    )
    return 1 + (7 + target_weekday - first_weekday) % 7


def _resolve_payment_day(day: int | None, is_last: bool, last_day: int) -> int | None:
    if is_last:
        return last_day
    return day


def _has_day(day: int | None, is_last: bool) -> bool:
    return day is not None or bool(is_last)


def _check_single_choice(day: int | None, is_last: bool, missing_message: str) -> None:
    if day is None and not is_last:
        raise RecurrenceValidationError(missing_message)
    if day is not None and is_last:
        raise RecurrenceValidationError(
            "Choose either a specific day or the last day of the month, not both."
        )


def _check_day_range(day: int | None, label: str) -> None:
    if day is not None and not 1 <= day <= 31:
        raise RecurrenceValidationError(f"{label} must be between 1 and 31.")
