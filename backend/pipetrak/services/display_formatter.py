"""
display_formatter.py — Human-readable identity labels and duplicate counts.

Within one drawing, components that share an identity group (same commodity
and size, differing only by seq) get a " (n)" suffix so the labels stay
distinct. Retired components are left out of the count.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pipetrak.config import SINGLETON_TYPES
from pipetrak.models.component_schema import Component


def format_identity(component_type: str, identity_key: Dict[str, Any]) -> str:
    """Base label for an identity key, without any duplicate suffix."""
    if not isinstance(identity_key, dict) or not identity_key:
        return component_type or "Unknown"
    if component_type in SINGLETON_TYPES:
        return str(identity_key.get(SINGLETON_TYPES[component_type]) or component_type)
    if "pipe_id" in identity_key:
        return str(identity_key["pipe_id"])
    if "commodity_code" in identity_key:
        size = identity_key.get("size")
        return f"{identity_key['commodity_code']} {size}" if size else str(identity_key["commodity_code"])
    values = [str(v) for v in identity_key.values() if v not in (None, "")]
    return "-".join(values) or component_type or "Unknown"


def identity_group_key(component: Component) -> Tuple[Optional[str], str, str]:
    """(drawing, type, label) — seq is deliberately left out."""
    return (
        component.drawing_id,
        component.component_type,
        format_identity(component.component_type, component.identity_key),
    )


def duplicate_counts(components: Iterable[Component]) -> Dict[Tuple[Optional[str], str, str], int]:
    counts: Dict[Tuple[Optional[str], str, str], int] = defaultdict(int)
    for component in components:
        if not component.is_retired:
            counts[identity_group_key(component)] += 1
    return dict(counts)


def assign_display_labels(components: Iterable[Component]) -> Dict[str, str]:
    """
    Map component id -> display label.

    Groups with more than one live member are suffixed by seq (or by
    position when seq is missing): 'VBALU-001 2 (1)', 'VBALU-001 2 (2)'.
    Singletons keep the bare label. Retired components get their bare label.
    """
    items: List[Component] = list(components)
    groups: Dict[Tuple[Optional[str], str, str], List[Component]] = defaultdict(list)
    for component in items:
        if not component.is_retired:
            groups[identity_group_key(component)].append(component)

    labels: Dict[str, str] = {}
    for key, members in groups.items():
        base = key[2]
        if len(members) == 1:
            labels[members[0].id] = base
            continue
        ordered = sorted(members, key=lambda c: (c.identity_key.get("seq") is None, c.identity_key.get("seq") or 0))
        for position, component in enumerate(ordered, start=1):
            seq = component.identity_key.get("seq")
            labels[component.id] = f"{base} ({seq if seq is not None else position})"

    for component in items:
        labels.setdefault(component.id, format_identity(component.component_type, component.identity_key))
    return labels
