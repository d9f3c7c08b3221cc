"""Field merge policies for combining source contributions.

All of the "who wins" rules for product fields live in the two tables
below and are applied mechanically by ``merge`` (while resolving) and
``plan_refresh`` (when writing a resolution over a stored product).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

from junktrunk.lookup.base import PartialResult, PriceRecord, is_blocked_merchant


class MergePolicy(str, Enum):
    FILL_IF_ABSENT = "fill_if_absent"
    APPEND_DEDUP = "append_dedup"
    FOLLOWS_NAME = "follows_name"
    PREFER_CLIENT = "prefer_client"
    REPLACE_IF_NONEMPTY = "replace_if_nonempty"
    KEEP_STORED = "keep_stored"


# Applied while sources are merged into the accumulator
RESOLUTION_POLICIES: dict[str, MergePolicy] = {
    "name": MergePolicy.FILL_IF_ABSENT,
    "image": MergePolicy.FILL_IF_ABSENT,
    "brand": MergePolicy.FILL_IF_ABSENT,
    "category": MergePolicy.FILL_IF_ABSENT,
    "platform": MergePolicy.FOLLOWS_NAME,
    "platform_url": MergePolicy.FOLLOWS_NAME,
    "prices": MergePolicy.APPEND_DEDUP,
}

# Applied when a fresh resolution is written over an existing product
WRITE_POLICIES: dict[str, MergePolicy] = {
    "name": MergePolicy.KEEP_STORED,
    "brand": MergePolicy.KEEP_STORED,
    "category": MergePolicy.KEEP_STORED,
    "image": MergePolicy.PREFER_CLIENT,
    "prices": MergePolicy.REPLACE_IF_NONEMPTY,
}

ALL_FIELDS = frozenset(RESOLUTION_POLICIES)
PRICE_FIELDS = frozenset({"prices"})


def merge_prices(
    existing: Iterable[PriceRecord],
    incoming: Iterable[PriceRecord],
    blocked_merchants: Optional[list[str]] = None,
) -> tuple[PriceRecord, ...]:
    """
    Append incoming prices in discovery order.

    Blocked merchants and (source, price-within-a-cent) duplicates are
    dropped.
    """
    merged = list(existing)
    for record in incoming:
        if record.price <= 0 or is_blocked_merchant(record.source, blocked_merchants):
            continue
        if any(record.is_duplicate_of(seen) for seen in merged):
            continue
        merged.append(record)
    return tuple(merged)


def merge(
    acc: PartialResult,
    delta: Optional[PartialResult],
    accepts: frozenset[str] = ALL_FIELDS,
    blocked_merchants: Optional[list[str]] = None,
) -> PartialResult:
    """
    Merge one source contribution into the accumulator.

    Args:
        acc: Current accumulator (not modified)
        delta: Source contribution; None merges nothing
        accepts: Fields this source is trusted to supply
        blocked_merchants: Override for the configured deny-list

    Returns:
        New accumulator
    """
    if delta is None:
        return acc

    updates: dict = {}
    for field_name, policy in RESOLUTION_POLICIES.items():
        if field_name not in accepts:
            continue
        incoming = getattr(delta, field_name)
        current = getattr(acc, field_name)

        if policy is MergePolicy.FILL_IF_ABSENT:
            if not current and incoming:
                updates[field_name] = incoming
        elif policy is MergePolicy.APPEND_DEDUP:
            updates[field_name] = merge_prices(current, incoming, blocked_merchants)

    # Provenance is recorded only at the moment the name is first set
    if "name" in updates and "name" in accepts:
        updates["platform"] = delta.platform
        updates["platform_url"] = delta.platform_url

    return replace(acc, **updates) if updates else acc


def truncate_prices(acc: PartialResult, limit: int) -> PartialResult:
    """Keep only the first ``limit`` prices."""
    if len(acc.prices) <= limit:
        return acc
    return replace(acc, prices=acc.prices[:limit])


@dataclass(frozen=True)
class RefreshPlan:
    """Column updates to apply to an existing product after a refresh."""

    prices: Optional[list[dict[str, str]]] = None
    image: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return self.prices is not None or self.image is not None


def choose_image(client_image: Optional[str], resolved_image: Optional[str]) -> Optional[str]:
    """An explicit client image always beats a looked-up one."""
    for candidate in (client_image, resolved_image):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def plan_refresh(
    stored_image: Optional[str],
    resolved: Optional[PartialResult],
    client_image: Optional[str] = None,
) -> RefreshPlan:
    """
    Decide what an existing-record refresh writes, field by field from
    WRITE_POLICIES.

    A NotFound resolution writes nothing, so known-good data is never
    erased by a transient outage.
    """
    if resolved is None:
        return RefreshPlan()

    stored = {"image": stored_image}
    client = {"image": client_image}
    updates: dict = {}

    for field_name, policy in WRITE_POLICIES.items():
        incoming = getattr(resolved, field_name)

        if policy is MergePolicy.REPLACE_IF_NONEMPTY:
            if incoming:
                updates[field_name] = incoming
        elif policy is MergePolicy.PREFER_CLIENT:
            value = choose_image(client.get(field_name), incoming)
            if value and value != stored.get(field_name):
                updates[field_name] = value
        # KEEP_STORED: never written by a refresh

    if "prices" in updates:
        updates["prices"] = [p.to_dict() for p in updates["prices"]]
    return RefreshPlan(**updates)
