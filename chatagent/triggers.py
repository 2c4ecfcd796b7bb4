"""Trigger wire format and next-fire-time computation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Union

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chatagent.errors import InvalidSchedule
from chatagent.models import AfterTrigger, AtTrigger, CronTrigger, Trigger


class _ScheduledSpec(BaseModel):
    type: Literal["scheduled"]
    date: datetime


class _DelayedSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["delayed"]
    delay_in_seconds: int = Field(alias="delayInSeconds", ge=0)


class _CronSpec(BaseModel):
    type: Literal["cron"]
    cron: str


class _NoScheduleSpec(BaseModel):
    type: Literal["no-schedule"]


_TRIGGER_ADAPTER: TypeAdapter[Any] = TypeAdapter(
    Annotated[
        Union[_ScheduledSpec, _DelayedSpec, _CronSpec, _NoScheduleSpec],
        Field(discriminator="type"),
    ]
)

# JSON schema advertised to the model for the ``when`` argument of scheduleTask.
TRIGGER_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        'One of {"type": "scheduled", "date": "<ISO-8601>"}, '
        '{"type": "delayed", "delayInSeconds": <int>} or '
        '{"type": "cron", "cron": "<cron expression>"}.'
    ),
}


def parse_trigger(raw: Trigger | dict[str, Any]) -> Trigger:
    """Turn a wire-format trigger dict into a Trigger. Raises InvalidSchedule.

    Trigger instances are checked and returned as they are; a CronTrigger
    must already hold a croniter-order expression.
    """

    if isinstance(raw, CronTrigger):
        _check_cron(raw.expression)
        return raw
    if isinstance(raw, (AtTrigger, AfterTrigger)):
        return raw
    try:
        spec = _TRIGGER_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise InvalidSchedule(f"Invalid trigger {raw!r}: {exc}") from exc

    if isinstance(spec, _ScheduledSpec):
        return AtTrigger(when=_as_utc(spec.date))
    if isinstance(spec, _DelayedSpec):
        return AfterTrigger(delay_seconds=spec.delay_in_seconds)
    if isinstance(spec, _CronSpec):
        return CronTrigger(expression=normalize_cron(spec.cron))
    raise InvalidSchedule("Not a valid schedule input")


def normalize_cron(expression: str) -> str:
    """Validate a 5- or 6-field cron expression.

    Six-field expressions carry seconds first; croniter wants them last.
    """

    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    elif len(fields) != 5:
        raise InvalidSchedule(f"Cron expression must have 5 or 6 fields: {expression!r}")
    normalized = " ".join(fields)
    _check_cron(normalized, shown=expression)
    return normalized


def _check_cron(expression: str, shown: str | None = None) -> None:
    shown = shown or expression
    if len(expression.split()) not in (5, 6):
        raise InvalidSchedule(f"Cron expression must have 5 or 6 fields: {shown!r}")
    try:
        croniter(expression)
    except (ValueError, KeyError) as exc:
        raise InvalidSchedule(f"Malformed cron expression {shown!r}: {exc}") from exc


def next_cron_occurrence(expression: str, after: datetime) -> datetime:
    """First occurrence strictly after ``after``, in UTC."""

    return croniter(expression, _as_utc(after)).get_next(datetime).astimezone(timezone.utc)


def first_fire_time(trigger: Trigger, now: datetime, past_tolerance: timedelta) -> datetime:
    if isinstance(trigger, AtTrigger):
        when = _as_utc(trigger.when)
        if when < now - past_tolerance:
            raise InvalidSchedule(f"Scheduled time {when.isoformat()} is in the past")
        return when
    if isinstance(trigger, AfterTrigger):
        if trigger.delay_seconds < 0:
            raise InvalidSchedule("Delay must not be negative")
        return now + timedelta(seconds=trigger.delay_seconds)
    return next_cron_occurrence(trigger.expression, now)


def trigger_to_row(trigger: Trigger) -> tuple[str, str]:
    if isinstance(trigger, AtTrigger):
        return trigger.kind, _as_utc(trigger.when).isoformat()
    if isinstance(trigger, AfterTrigger):
        return trigger.kind, str(trigger.delay_seconds)
    return trigger.kind, trigger.expression


def trigger_from_row(trigger_type: str, value: str) -> Trigger:
    if trigger_type == AtTrigger.kind:
        return AtTrigger(when=datetime.fromisoformat(value))
    if trigger_type == AfterTrigger.kind:
        return AfterTrigger(delay_seconds=int(value))
    if trigger_type == CronTrigger.kind:
        return CronTrigger(expression=value)
    raise ValueError(f"Unknown trigger type in task store: {trigger_type}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
