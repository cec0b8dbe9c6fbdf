"""
Snooze Matcher

Decides whether a (notification type, account id) pair is currently
snoozed. The same rule backs notification visibility, neglect detection
and every count shown to users, so the views cannot drift apart.

Matching rule:
- notification_type must be equal
- snoozed_until must be strictly after `now`
- both account ids blank -> type-wide match
- exactly one blank -> no match (reported as AMBIGUOUS, logged at debug)
- otherwise compare normalized strings ("123" == 123 == 123.0)
"""

import logging
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from dateutil import parser as date_parser

from .classifier import normalize_account_id
from .exceptions import SnoozeAmbiguous
from .predicates import field_value

logger = logging.getLogger(__name__)


class SnoozeMatch(str, Enum):
    """Outcome of matching one snooze against a query."""
    MATCH = "match"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"  # null paired with non-null account id


def type_value(notification_type: Any) -> str:
    if isinstance(notification_type, Enum):
        return str(notification_type.value)
    return str(notification_type or "").strip()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Timezone-aware datetime from a datetime, date or ISO string; naive means UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        try:
            parsed = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_active(snooze: Any, now: datetime) -> bool:
    """True while snoozed_until is strictly in the future."""
    until = parse_timestamp(field_value(snooze, "snoozed_until"))
    if until is None:
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return until > now


def _log_ambiguous(notification_type: str, error: SnoozeAmbiguous) -> None:
    logger.debug(f"Treating {notification_type} snooze as non-matching: {error}")


def match_snooze(
    snooze: Any,
    notification_type: Any,
    account_id: Any,
    now: datetime,
    strict: bool = False,
) -> SnoozeMatch:
    """
    Match one snooze record against a (type, account id) query.

    With strict=True an ambiguous pairing raises SnoozeAmbiguous instead
    of being reported as AMBIGUOUS.
    """
    if type_value(field_value(snooze, "notification_type")) != type_value(notification_type):
        return SnoozeMatch.NO_MATCH
    if not is_active(snooze, now):
        return SnoozeMatch.NO_MATCH

    snooze_account = normalize_account_id(field_value(snooze, "related_account_id"))
    query_account = normalize_account_id(account_id)

    if snooze_account is None and query_account is None:
        return SnoozeMatch.MATCH
    if snooze_account is None or query_account is None:
        error = SnoozeAmbiguous(
            f"Snooze account {snooze_account!r} cannot be compared with {query_account!r}"
        )
        if strict:
            raise error
        _log_ambiguous(type_value(notification_type), error)
        return SnoozeMatch.AMBIGUOUS
    return SnoozeMatch.MATCH if snooze_account == query_account else SnoozeMatch.NO_MATCH


def is_snoozed(
    snoozes: Iterable[Any],
    notification_type: Any,
    account_id: Any,
    now: datetime,
) -> bool:
    """True if any snooze matches the query."""
    return any(
        match_snooze(s, notification_type, account_id, now) == SnoozeMatch.MATCH
        for s in snoozes or []
    )


def active_snoozes(snoozes: Iterable[Any], now: datetime) -> List[Any]:
    return [s for s in snoozes or [] if is_active(s, now)]


class SnoozeIndex:
    """
    Precomputed lookup for batch evaluation.

    Gives the same answer as is_snoozed for every query, in O(1).
    """

    def __init__(self, snoozes: Iterable[Any], now: datetime):
        self.now = now
        self._until: Dict[Tuple[str, Optional[str]], datetime] = {}
        self._type_wide: Set[str] = set()
        self._scoped: Set[str] = set()
        for snooze in active_snoozes(snoozes, now):
            key = (
                type_value(field_value(snooze, "notification_type")),
                normalize_account_id(field_value(snooze, "related_account_id")),
            )
            until = parse_timestamp(field_value(snooze, "snoozed_until"))
            if key not in self._until or until > self._until[key]:
                self._until[key] = until
            (self._type_wide if key[1] is None else self._scoped).add(key[0])

    def __len__(self) -> int:
        return len(self._until)

    def is_snoozed(self, notification_type: Any, account_id: Any) -> bool:
        type_key, account_key = type_value(notification_type), normalize_account_id(account_id)
        if (type_key, account_key) in self._until:
            return True
        if account_key is None and type_key in self._scoped:
            _log_ambiguous(type_key, SnoozeAmbiguous("Account-specific snooze cannot match a query without account"))
        elif account_key is not None and type_key in self._type_wide:
            _log_ambiguous(type_key, SnoozeAmbiguous(f"Type-wide snooze cannot match account {account_key!r}"))
        return False

    def snoozed_until(self, notification_type: Any, account_id: Any) -> Optional[datetime]:
        key = (type_value(notification_type), normalize_account_id(account_id))
        return self._until.get(key)
