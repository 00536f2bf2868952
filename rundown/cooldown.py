"""Cooldown engine.

A cooldown is a scheduled period of ``duration_weeks`` weeks starting on
``next_start``.  The period is half-open: the start day is inside it, the end
day (``next_start + duration_weeks * 7 days``) is not.

Functions:
    cooldown_status(next_start, duration_weeks, now)  -> CooldownStatus
    status_for_schedule(schedule, now)                 -> CooldownStatus
    validate_schedule(next_start, duration_weeks)      -> (date, int)
    filter_issues_for_cooldown(issues)                 -> list[RemoteIssue]
"""

from datetime import date, datetime, timedelta, timezone

from rundown.models import CooldownSchedule, CooldownStatus, RemoteIssue

MIN_DURATION_WEEKS = 1
MAX_DURATION_WEEKS = 52

#: Projects whose name contains one of these are maintenance buckets, not
#: project-board work, and stay visible during a cooldown.
MAINTENANCE_PROJECT_KEYWORDS = ("misc", "dpe")


class CooldownValidationError(ValueError):
    """Raised when a cooldown schedule is malformed."""


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def cooldown_end(next_start: date, duration_weeks: int) -> date:
    return next_start + timedelta(weeks=duration_weeks)


def cooldown_status(
    next_start: date | datetime,
    duration_weeks: int,
    now: date | datetime | None = None,
) -> CooldownStatus:
    """Return whether *now* falls inside the cooldown, and which week of it.

    Datetimes are reduced to their UTC calendar date.  A zero-length window
    is never active.
    """
    start = _as_date(next_start)
    today = _as_date(now if now is not None else datetime.now(timezone.utc))
    end = cooldown_end(start, duration_weeks)

    if today < start or today >= end:
        return CooldownStatus.inactive()

    week = (today - start).days // 7 + 1
    week = max(1, min(week, duration_weeks))
    return CooldownStatus(
        is_in_cooldown=True,
        week_number=week,
        total_weeks=duration_weeks,
        end_date=end,
        start_date=start,
    )


def status_for_schedule(
    schedule: CooldownSchedule | None,
    now: date | datetime | None = None,
) -> CooldownStatus:
    if schedule is None:
        return CooldownStatus.inactive()
    return cooldown_status(schedule.next_cooldown_start, schedule.cooldown_duration_weeks, now)


def validate_schedule(next_start: str | date, duration_weeks: int | str) -> tuple[date, int]:
    """Parse and check a schedule at the input boundary.

    Raises:
        CooldownValidationError: bad date, non-integer or out-of-range weeks.
    """
    if isinstance(next_start, datetime):
        start = next_start.date()
    elif isinstance(next_start, date):
        start = next_start
    else:
        try:
            start = date.fromisoformat(str(next_start).strip())
        except ValueError as exc:
            raise CooldownValidationError(
                f"Invalid date '{next_start}'. Use ISO date format (YYYY-MM-DD)."
            ) from exc

    if isinstance(duration_weeks, bool):
        raise CooldownValidationError("Duration must be a whole number of weeks.")
    try:
        weeks = int(duration_weeks)
    except (TypeError, ValueError) as exc:
        raise CooldownValidationError(
            f"Duration must be a whole number of weeks, got '{duration_weeks}'."
        ) from exc
    if str(weeks) != str(duration_weeks).strip():
        raise CooldownValidationError(
            f"Duration must be a whole number of weeks, got '{duration_weeks}'."
        )
    if not MIN_DURATION_WEEKS <= weeks <= MAX_DURATION_WEEKS:
        raise CooldownValidationError(
            f"Duration must be between {MIN_DURATION_WEEKS} and {MAX_DURATION_WEEKS} weeks, "
            f"got {weeks}."
        )
    return start, weeks


def is_maintenance_issue(issue: RemoteIssue) -> bool:
    """True for issues without a project or in a misc/maintenance project."""
    if issue.project is None:
        return True
    name = issue.project.name.lower()
    return any(keyword in name for keyword in MAINTENANCE_PROJECT_KEYWORDS)


def filter_issues_for_cooldown(issues: list[RemoteIssue]) -> list[RemoteIssue]:
    """Drop project-board issues, keeping maintenance work."""
    return [issue for issue in issues if is_maintenance_issue(issue)]
