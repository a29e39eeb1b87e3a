"""
Periodicity Scheduler Module

Turns a periodicity configuration, a start date and a count into an ordered
sequence of due dates. Also stores the operator-managed periodicity
catalogue; a loan keeps a snapshot of the rule it was created with, so a
periodicity referenced by a loan is frozen.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .calendar_utils import (
    add_months, add_years, is_allowed_month, is_allowed_month_day,
    is_allowed_weekday, next_allowed_weekday, sunday_based_weekday,
)
from .errors import ConfigurationError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


WEEKDAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# Consecutive candidates a weekday filter may reject before the rule is
# declared unsatisfiable (a week holds every weekday once)
MAX_WEEKDAY_REJECTIONS = 7
DEFAULT_MAX_REJECTIONS = 48


class IntervalType(Enum):
    """Unit of the scheduling step"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass
class PeriodicityRule:
    """Scheduling configuration: step unit, step size and optional allow-lists"""
    interval_type: IntervalType
    interval_value: int = 1
    allowed_weekdays: List[int] = field(default_factory=list)
    allowed_month_days: List[int] = field(default_factory=list)
    allowed_months: List[int] = field(default_factory=list)

    def validate(self) -> None:
        if not isinstance(self.interval_type, IntervalType):
            raise ConfigurationError(f"Invalid interval type: {self.interval_type}")
        if self.interval_value < 1:
            raise ConfigurationError("Interval value must be at least 1")
        if any(d < 0 or d > 6 for d in self.allowed_weekdays):
            raise ConfigurationError("Allowed weekdays must be between 0 (Sunday) and 6 (Saturday)")
        if any(d < 1 or d > 31 for d in self.allowed_month_days):
            raise ConfigurationError("Allowed month days must be between 1 and 31")
        if any(m < 1 or m > 12 for m in self.allowed_months):
            raise ConfigurationError("Allowed months must be between 1 and 12")

    @property
    def is_day_based(self) -> bool:
        return self.interval_type in (IntervalType.DAILY, IntervalType.WEEKLY)

    def step_days(self) -> int:
        if self.interval_type == IntervalType.WEEKLY:
            return 7 * self.interval_value
        return self.interval_value

    def accepts(self, candidate: date) -> bool:
        """Whether ``candidate`` passes every allow-list relevant to this rule"""
        if not is_allowed_weekday(candidate, self.allowed_weekdays):
            return False
        if self.is_day_based:
            return True
        return (is_allowed_month_day(candidate, self.allowed_month_days)
                and is_allowed_month(candidate, self.allowed_months))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_type": self.interval_type.value,
            "interval_value": self.interval_value,
            "allowed_weekdays": list(self.allowed_weekdays),
            "allowed_month_days": list(self.allowed_month_days),
            "allowed_months": list(self.allowed_months),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PeriodicityRule':
        try:
            interval_type = IntervalType(data["interval_type"])
        except ValueError:
            raise ConfigurationError(f"Invalid interval type: {data['interval_type']}")
        return cls(
            interval_type=interval_type,
            interval_value=int(data.get("interval_value", 1)),
            allowed_weekdays=[int(d) for d in data.get("allowed_weekdays") or []],
            allowed_month_days=[int(d) for d in data.get("allowed_month_days") or []],
            allowed_months=[int(m) for m in data.get("allowed_months") or []],
        )


class DueDateSchedule:
    """
    Lazy, finite, restartable sequence of due dates.

    Each iteration recomputes the sequence from scratch, so identical inputs
    always yield identical dates.

    DAILY/WEEKLY: the start date is the first candidate; an accepted date is
    followed by ``accepted + step``; a candidate rejected by the weekday
    filter is replaced by the next day.

    MONTHLY/YEARLY: each nominal date is ``interval_value`` months/years after
    the previous nominal date, on the start date's day of month (clamped to
    the month's last day). Month-day and month filters skip nominal dates;
    a weekday filter rolls an accepted date forward to an allowed weekday.
    """

    def __init__(self, rule: PeriodicityRule, start_date: date, count: int,
                 max_rejections: int = DEFAULT_MAX_REJECTIONS):
        rule.validate()
        if count < 0:
            raise ValidationError("Due date count cannot be negative")
        self.rule = rule
        self.start_date = start_date
        self.count = count
        self.max_rejections = max_rejections

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[date]:
        if self.rule.is_day_based:
            return self._iter_day_based()
        return self._iter_calendar_based()

    def _iter_day_based(self) -> Iterator[date]:
        step = timedelta(days=self.rule.step_days())
        candidate = self.start_date
        produced = 0
        rejections = 0
        while produced < self.count:
            if self.rule.accepts(candidate):
                yield candidate
                produced += 1
                rejections = 0
                candidate = candidate + step
            else:
                rejections += 1
                if rejections >= MAX_WEEKDAY_REJECTIONS:
                    raise ConfigurationError(
                        "Periodicity can never produce an allowed date",
                        {"rule": self.rule.to_dict(), "last_candidate": candidate.isoformat()},
                    )
                candidate = candidate + timedelta(days=1)

    def _next_nominal(self, nominal: date) -> date:
        value = self.rule.interval_value
        if self.rule.interval_type == IntervalType.MONTHLY:
            return add_months(nominal, value, anchor_day=self.start_date.day)
        return add_years(nominal, value, anchor_month=self.start_date.month,
                         anchor_day=self.start_date.day)

    def _iter_calendar_based(self) -> Iterator[date]:
        nominal = self.start_date
        produced = 0
        rejections = 0
        while produced < self.count:
            if (is_allowed_month_day(nominal, self.rule.allowed_month_days)
                    and is_allowed_month(nominal, self.rule.allowed_months)):
                yield next_allowed_weekday(nominal, self.rule.allowed_weekdays)
                produced += 1
                rejections = 0
            else:
                rejections += 1
                if rejections > self.max_rejections:
                    raise ConfigurationError(
                        "Periodicity can never produce an allowed date",
                        {"rule": self.rule.to_dict(), "last_candidate": nominal.isoformat()},
                    )
            nominal = self._next_nominal(nominal)


def generate_due_dates(rule: PeriodicityRule, start_date: date, count: int,
                       max_rejections: int = DEFAULT_MAX_REJECTIONS) -> List[date]:
    """Ordered list of ``count`` due dates starting at ``start_date``"""
    return list(DueDateSchedule(rule, start_date, count, max_rejections))


def validate_start_date(rule: PeriodicityRule, start_date: date) -> Tuple[bool, Optional[date], Optional[str]]:
    """
    Check a start date against the rule's allow-lists.

    Returns (is_valid, suggested_date, message); the suggestion is the
    first later date the rule accepts.
    """
    rule.validate()
    if rule.accepts(start_date):
        return True, None, None

    candidate = start_date
    for _ in range(366 * 4):
        candidate = candidate + timedelta(days=1)
        if rule.accepts(candidate):
            break
    else:
        raise ConfigurationError("Periodicity can never produce an allowed date")

    message = f"{start_date.isoformat()} ({WEEKDAY_NAMES[sunday_based_weekday(start_date)]}) is not allowed"
    if rule.allowed_weekdays:
        allowed = ", ".join(WEEKDAY_NAMES[d] for d in sorted(rule.allowed_weekdays))
        message += f"; allowed weekdays: {allowed}"
    message += f". Suggested: {candidate.isoformat()}"
    return False, candidate, message


def describe_periodicity(rule: PeriodicityRule) -> str:
    """Human label such as 'Monthly', 'Every 15 days' or 'Daily (Mon, Tue)'"""
    value = rule.interval_value
    if rule.interval_type == IntervalType.DAILY:
        if rule.allowed_weekdays:
            days = ", ".join(WEEKDAY_NAMES[d] for d in rule.allowed_weekdays)
            return f"Daily ({days})"
        return "Daily" if value == 1 else f"Every {value} days"
    if rule.interval_type == IntervalType.WEEKLY:
        return "Weekly" if value == 1 else f"Every {value} weeks"
    if rule.interval_type == IntervalType.MONTHLY:
        return "Monthly" if value == 1 else f"Every {value} months"
    return "Yearly" if value == 1 else f"Every {value} years"


# Presets offered to operators when the catalogue is seeded
STANDARD_PERIODICITIES: Dict[str, PeriodicityRule] = {
    "Daily": PeriodicityRule(IntervalType.DAILY, 1),
    "Weekly": PeriodicityRule(IntervalType.DAILY, 7),
    "Fortnightly": PeriodicityRule(IntervalType.DAILY, 15),
    "Monthly": PeriodicityRule(IntervalType.MONTHLY, 1),
    "Bimonthly": PeriodicityRule(IntervalType.MONTHLY, 2),
    "Quarterly": PeriodicityRule(IntervalType.MONTHLY, 3),
    "Semiannual": PeriodicityRule(IntervalType.MONTHLY, 6),
    "Yearly": PeriodicityRule(IntervalType.YEARLY, 1),
}


@dataclass
class Periodicity(StorageRecord):
    """Named periodicity in the operator catalogue"""
    name: str
    rule: PeriodicityRule
    description: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "name": self.name,
            "rule": self.rule.to_dict(),
            "description": self.description,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Periodicity':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            name=data["name"],
            rule=PeriodicityRule.from_dict(data["rule"]),
            description=data.get("description", ""),
            is_active=data.get("is_active", True),
        )


class PeriodicityManager:
    """Operator-managed periodicity catalogue"""

    TABLE = "periodicities"

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("lending.periodicity")
        self._reference_checks = []

    def add_reference_check(self, check) -> None:
        """Register a callable(periodicity_id) -> bool telling whether a loan uses the periodicity"""
        self._reference_checks.append(check)

    def is_referenced(self, periodicity_id: str) -> bool:
        return any(check(periodicity_id) for check in self._reference_checks)

    def create_periodicity(self, name: str, rule: PeriodicityRule, description: Optional[str] = None) -> Periodicity:
        if not name or not name.strip():
            raise ValidationError("Periodicity name is required")
        rule.validate()
        if any(p.name == name.strip() for p in self.list_periodicities(active_only=False)):
            raise ValidationError(f"Periodicity named '{name}' already exists")

        now = datetime.now(timezone.utc)
        periodicity = Periodicity(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            rule=rule,
            description=description if description is not None else describe_periodicity(rule),
        )
        with self.storage.atomic():
            self.storage.save(self.TABLE, periodicity.id, periodicity.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.PERIODICITY_CREATED, "periodicity", periodicity.id,
                    {"name": periodicity.name, "rule": rule.to_dict()}
                )
        log_action(self.logger, "info", f"Periodicity '{periodicity.name}' created",
                   action="create_periodicity", resource=f"periodicity:{periodicity.id}",
                   extra={"rule": rule.to_dict()})
        return periodicity

    def get_periodicity(self, periodicity_id: str) -> Periodicity:
        data = self.storage.load(self.TABLE, periodicity_id)
        if not data:
            raise NotFoundError("Periodicity", periodicity_id)
        return Periodicity.from_dict(data)

    def list_periodicities(self, active_only: bool = True) -> List[Periodicity]:
        periodicities = [Periodicity.from_dict(d) for d in self.storage.load_all(self.TABLE)]
        if active_only:
            periodicities = [p for p in periodicities if p.is_active]
        return sorted(periodicities, key=lambda p: p.created_at)

    def update_periodicity(self, periodicity_id: str, rule: Optional[PeriodicityRule] = None,
                           name: Optional[str] = None, is_active: Optional[bool] = None) -> Periodicity:
        """
        Change a periodicity that no loan uses yet.

        Deactivating is always allowed; changing the rule of a referenced
        periodicity is refused.
        """
        with self.storage.atomic():
            periodicity = self.get_periodicity(periodicity_id)
            if rule is not None:
                rule.validate()
                if self.is_referenced(periodicity_id):
                    raise ValidationError(
                        f"Periodicity {periodicity_id} is used by existing loans and cannot be changed"
                    )
                periodicity.rule = rule
                periodicity.description = describe_periodicity(rule)
            if name is not None:
                periodicity.name = name.strip()
            if is_active is not None:
                periodicity.is_active = is_active
            periodicity.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.TABLE, periodicity.id, periodicity.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.PERIODICITY_UPDATED, "periodicity", periodicity.id,
                    {"name": periodicity.name, "rule": periodicity.rule.to_dict(),
                     "is_active": periodicity.is_active}
                )
        return periodicity

    def seed_standard(self) -> List[Periodicity]:
        """Create the standard presets that are not in the catalogue yet"""
        existing = {p.name for p in self.list_periodicities(active_only=False)}
        created = []
        for name, rule in STANDARD_PERIODICITIES.items():
            if name not in existing:
                created.append(self.create_periodicity(
                    name, PeriodicityRule.from_dict(rule.to_dict())
                ))
        return created
