"""Cron schedule evaluation in UTC.

Wraps APScheduler's ``CronTrigger`` so that five-field expressions behave the
way crontab users expect:

- day-of-week is crontab-numbered (0 and 7 are Sunday, 1 is Monday), whereas
  ``CronTrigger`` counts from Monday. The field is expanded and rewritten
  with weekday names before it reaches APScheduler.
- When both day-of-month and day-of-week are restricted, a day matching
  either one fires (crontab OR rule). ``CronTrigger`` ANDs its fields, so
  such expressions are split into two triggers and the earliest fire time wins.
- A day of month that no listed month has (``0 0 30 2 *``) is rejected at
  parse time.

Nothing here runs in the background: a schedule only answers "what is the
next instant after this one?".
"""

from __future__ import annotations

from datetime import UTC, datetime

from apscheduler.triggers.cron import CronTrigger

from lazyfeed.errors import InvalidCronError

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_WEEKDAY_NUMBERS = {name: i for i, name in enumerate(_WEEKDAY_NAMES)}
_MONTH_NAMES = (
    "jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec",
)
# February counts 29 so that "0 0 29 2 *" stays valid for leap years
_DAYS_IN_MONTH = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)

# Start of the fire-time sanity check run on every parsed expression
_PROBE_INSTANT = datetime(2000, 1, 1, tzinfo=UTC)


def _weekday_number(token: str, expression: str) -> int:
    token = token.strip().lower()
    if token in _WEEKDAY_NUMBERS:
        return _WEEKDAY_NUMBERS[token]
    if not token.isdigit():
        raise InvalidCronError(expression, f"unrecognised day of week {token!r}")
    value = int(token)
    if value > 7:
        raise InvalidCronError(expression, f"day of week {value} out of range 0-7")
    return 0 if value == 7 else value


def _expand_day_of_week(field: str, expression: str) -> str:
    """Translate a crontab day-of-week field into APScheduler syntax."""
    if field in ("*", "?"):
        return "*"

    days: set[int] = set()
    for part in field.split(","):
        if not part:
            raise InvalidCronError(expression, "empty list item in day of week")

        step = 1
        if "/" in part:
            part, _, step_text = part.partition("/")
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronError(expression, f"invalid step {step_text!r}")
            step = int(step_text)

        if part in ("*", "?"):
            first, last = 0, 6
        elif "-" in part:
            start_text, _, end_text = part.partition("-")
            first = _weekday_number(start_text, expression)
            last = _weekday_number(end_text, expression)
            # "5-7" is Friday through Sunday
            if end_text.strip() == "7":
                last = 7
            if first > last:
                raise InvalidCronError(expression, f"reversed day of week range {part!r}")
        else:
            first = _weekday_number(part, expression)
            # "1/2" means every second day starting Monday
            last = 6 if step > 1 else first

        days.update(day % 7 for day in range(first, last + 1, step))

    if len(days) == 7:
        return "*"
    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))


def _calendar_values(
    field: str, low: int, high: int, names: tuple[str, ...], label: str, expression: str
) -> set[int]:
    """Expand a day-of-month or month field into the set of values it matches.

    Only plain crontab syntax is accepted: numbers, names (months only),
    ``*``, ``?``, ranges, steps and lists. APScheduler extensions such as
    ``last`` are rejected.
    """

    def number(token: str) -> int:
        token = token.strip().lower()
        if token in names:
            return names.index(token) + low
        if not token.isdigit():
            raise InvalidCronError(expression, f"unrecognised {label} {token!r}")
        return int(token)

    values: set[int] = set()
    for part in field.split(","):
        part, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronError(expression, f"invalid step {step_text!r}")
            step = int(step_text)

        if part in ("*", "?"):
            first, last = low, high
        elif "-" in part:
            start_text, _, end_text = part.partition("-")
            first, last = number(start_text), number(end_text)
        else:
            first = number(part)
            last = high if step_text else first

        if not low <= first <= last <= high:
            raise InvalidCronError(expression, f"{label} {part!r} out of range {low}-{high}")
        values.update(range(first, last + 1, step))
    return values


def _day_occurs(day: str, month: str, expression: str) -> bool:
    """Whether some listed day of month exists in some listed month."""
    days = _calendar_values(day, 1, 31, (), "day of month", expression)
    months = _calendar_values(month, 1, 12, _MONTH_NAMES, "month", expression)
    return min(days) <= max(_DAYS_IN_MONTH[m - 1] for m in months)


def _build_trigger(minute: str, hour: str, day: str, month: str, day_of_week: str) -> CronTrigger:
    return CronTrigger(
        second=0,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
        timezone=UTC,
    )


class CronSchedule:
    """A validated five-field cron expression evaluated in UTC."""

    def __init__(self, expression: str, triggers: tuple[CronTrigger, ...]) -> None:
        self.expression = expression
        self._triggers = triggers

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        """Parse and validate *expression*. Raises ``InvalidCronError``."""
        fields = expression.split()
        if len(fields) != 5:
            raise InvalidCronError(expression, f"expected 5 fields, got {len(fields)}")

        minute, hour, day, month, day_of_week = fields
        apscheduler_dow = _expand_day_of_week(day_of_week, expression)
        # Decided here rather than by CronTrigger, which would scan to year 9999
        day_occurs = _day_occurs(day, month, expression)
        if day == "?":
            day = "*"
        either_day = not day.startswith("*") and not day_of_week.startswith(("*", "?"))
        if not day_occurs and not either_day:
            raise InvalidCronError(expression, "day of month never occurs in month")

        try:
            if not either_day:
                triggers: tuple[CronTrigger, ...] = (
                    _build_trigger(minute, hour, day, month, apscheduler_dow),
                )
            else:
                triggers = (_build_trigger(minute, hour, "*", month, apscheduler_dow),)
                if day_occurs:
                    triggers += (_build_trigger(minute, hour, day, month, "*"),)
        except ValueError as exc:
            raise InvalidCronError(expression, str(exc)) from exc

        # Only satisfiable expressions get here, so the check ends within a leap cycle
        schedule = cls(expression, triggers)
        try:
            probe = schedule._next_fire_time(_PROBE_INSTANT)
        except (ValueError, OverflowError) as exc:
            raise InvalidCronError(expression, str(exc)) from exc
        if probe is None:
            raise InvalidCronError(expression, "expression never fires")
        return schedule

    def _next_fire_time(self, reference: datetime) -> datetime | None:
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=UTC)
        reference = reference.astimezone(UTC)
        # previous_fire_time == now makes CronTrigger search strictly after it
        candidates = [
            fire_time
            for trigger in self._triggers
            if (fire_time := trigger.get_next_fire_time(reference, reference)) is not None
        ]
        return min(candidates) if candidates else None

    def next_after(self, reference: datetime) -> datetime:
        """Return the first matching instant strictly after *reference*, in UTC.

        Naive datetimes are taken as UTC. The result has whole-second
        precision, so a reference sitting exactly on a fire time yields the
        following one.
        """
        fire_time = self._next_fire_time(reference)
        if fire_time is None:
            raise InvalidCronError(self.expression, "no fire time after reference")
        return fire_time.astimezone(UTC)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"


def validate(expression: str) -> bool:
    """Return ``True`` if *expression* is a usable five-field cron expression."""
    try:
        CronSchedule.parse(expression)
    except InvalidCronError:
        return False
    return True


def next_after(expression: str, reference: datetime) -> datetime:
    """Shortcut for ``CronSchedule.parse(expression).next_after(reference)``."""
    return CronSchedule.parse(expression).next_after(reference)
