"""
Renewal Resolver - contract end date resolution.

resolve_renewal_date: latest contract_end among won estimates (or None).
find_duplicate_contracts: other won contracts live in the same risk window.

Both functions are pure and never raise on malformed input; estimates
with unusable dates are dropped.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Optional, Tuple

from .dates import days_between, normalize_date
from .predicates import field_value, is_won_estimate, max_by, normalize_text
from .rules import DEFAULT_RISK_WINDOW, RiskWindow
from .types import DuplicateEstimate


@dataclass(frozen=True)
class LiveContract:
    """A won estimate with a usable contract end date."""
    estimate: Any
    estimate_id: str
    end_date: str  # YYYY-MM-DD

    @property
    def end(self) -> date:
        return date.fromisoformat(self.end_date)

    @property
    def estimate_number(self) -> Optional[str]:
        number = field_value(self.estimate, "estimate_number")
        return str(number) if number is not None else None


@dataclass(frozen=True)
class RenewalResolution:
    """The resolved renewal date and the contract driving it."""
    renewal_date: date
    driving: LiveContract
    contracts: Tuple[LiveContract, ...]


def won_contracts(estimates: Iterable[Any]) -> List[LiveContract]:
    """
    Won estimates with a normalizable contract_end, one per estimate id.

    A repeated id keeps its latest contract_end, whatever the input order.
    """
    contracts: List[LiveContract] = []
    position_by_id = {}
    for estimate in estimates or []:
        if not is_won_estimate(estimate):
            continue
        end_date = normalize_date(field_value(estimate, "contract_end"))
        if end_date is None:
            continue
        raw_id = field_value(estimate, "id")
        estimate_id = str(raw_id) if raw_id is not None else ""
        contract = LiveContract(estimate, estimate_id, end_date)
        if not estimate_id:
            contracts.append(contract)
            continue
        position = position_by_id.get(estimate_id)
        if position is None:
            position_by_id[estimate_id] = len(contracts)
            contracts.append(contract)
        elif end_date > contracts[position].end_date:
            contracts[position] = contract
    return contracts


def resolve_renewal(estimates: Iterable[Any]) -> Optional[RenewalResolution]:
    """Resolve the renewal date together with the driving contract."""
    contracts = won_contracts(estimates)
    # YYYY-MM-DD strings sort the same way the dates do
    latest = max_by(contracts, "end_date", tie_break="estimate_id")
    if latest is None:
        return None
    return RenewalResolution(latest.end, latest, tuple(contracts))


def resolve_renewal_date(estimates: Iterable[Any]) -> Optional[date]:
    """Latest contract end among won estimates, or None. Never a default."""
    resolution = resolve_renewal(estimates)
    return resolution.renewal_date if resolution else None


def contract_site_key(estimate: Any) -> Tuple[str, str]:
    """Normalized (division, address) pair identifying a service contract."""
    return (
        normalize_text(field_value(estimate, "division")),
        normalize_text(field_value(estimate, "address")),
    )


def find_duplicate_contracts(
    estimates: Iterable[Any],
    today: date,
    window: RiskWindow = DEFAULT_RISK_WINDOW,
    resolution: Optional[RenewalResolution] = None,
) -> List[DuplicateEstimate]:
    """
    Other won contracts live inside the same risk window as the renewal.

    Only contracts for the same division and address as the driving estimate
    count. The renewal date itself is never changed by this.
    """
    if resolution is None:
        resolution = resolve_renewal(estimates)
    if resolution is None:
        return []

    driving = resolution.driving
    site_key = contract_site_key(driving.estimate)
    duplicates = []
    for contract in resolution.contracts:
        if contract is driving:
            continue
        if not window.contains(days_between(today, contract.end)):
            continue
        if contract_site_key(contract.estimate) != site_key:
            continue
        duplicates.append(
            DuplicateEstimate(
                id=contract.estimate_id,
                estimate_number=contract.estimate_number,
                contract_end=contract.end_date,
            )
        )

    duplicates.sort(key=lambda d: (d.contract_end, d.id), reverse=True)
    return duplicates
