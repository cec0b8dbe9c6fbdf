"""
Generic record predicates and comparators.

One filter/sort vocabulary for every record type. Records may be dataclasses,
ORM objects or plain dicts; fields are read through an accessor so the same
predicate works on all of them.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Union

from .rules import WON_PIPELINE_MARKER, WON_STATUSES

Accessor = Callable[[Any], Any]
Predicate = Callable[[Any], bool]


def field_value(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an object."""
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def accessor(name_or_fn: Union[str, Accessor]) -> Accessor:
    """Build an accessor from a field name, or pass a callable through."""
    if callable(name_or_fn):
        return name_or_fn
    return lambda record: field_value(record, name_or_fn)


@dataclass(frozen=True)
class FieldPredicate:
    """A test applied to one field of a record."""
    get: Accessor
    test: Callable[[Any], bool]

    def __call__(self, record: Any) -> bool:
        try:
            return bool(self.test(self.get(record)))
        except (TypeError, ValueError, AttributeError):
            return False

    def __and__(self, other: Predicate) -> Predicate:
        return all_of(self, other)


def where(field: Union[str, Accessor], test: Callable[[Any], bool]) -> FieldPredicate:
    """Predicate that applies `test` to the given field."""
    return FieldPredicate(accessor(field), test)


def all_of(*predicates: Predicate) -> Predicate:
    return lambda record: all(p(record) for p in predicates)


def select(records: Iterable[Any], predicate: Predicate) -> List[Any]:
    return [r for r in records if predicate(r)]


def group_by(records: Iterable[Any], key: Union[str, Accessor]) -> Dict[Hashable, List[Any]]:
    """Group records by a field, skipping records whose key is empty."""
    get = accessor(key)
    groups: Dict[Hashable, List[Any]] = defaultdict(list)
    for record in records:
        value = get(record)
        if value is None or value == "":
            continue
        groups[value].append(record)
    return dict(groups)


def max_by(
    records: Iterable[Any],
    key: Union[str, Accessor],
    tie_break: Optional[Union[str, Accessor]] = None,
) -> Optional[Any]:
    """
    Record with the greatest key.

    Among equal keys the record with the smallest tie_break value wins, so the
    result does not depend on input order.
    """
    get = accessor(key)
    get_tie = accessor(tie_break) if tie_break is not None else None
    best = None
    best_key = None
    for record in records:
        value = get(record)
        if best is None or value > best_key:
            best, best_key = record, value
        elif value == best_key and get_tie is not None:
            if str(get_tie(record)) < str(get_tie(best)):
                best = record
    return best


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def normalize_text(value: Any) -> str:
    """Lowercased, whitespace-collapsed text for key comparisons."""
    if value is None:
        return ""
    return " ".join(str(value).split()).lower()


def is_won_status(status: Any, pipeline_status: Any = None) -> bool:
    """True when an estimate status (or pipeline status) means a signed deal."""
    if is_present(pipeline_status) and WON_PIPELINE_MARKER in str(pipeline_status).strip().lower():
        return True
    if not is_present(status):
        return False
    return str(status).strip().lower() in WON_STATUSES


def is_won_estimate(estimate: Any) -> bool:
    return is_won_status(field_value(estimate, "status"), field_value(estimate, "pipeline_status"))
