"""
identity_resolver.py — Component identity keys from take-off rows.

Identity schemas by type:
  - spool          {spool_id}                                  (commodity code)
  - field_weld     {weld_number}                               (commodity code)
  - threaded_pipe  {pipe_id: "<DRAWING>-<SIZE>-<CMDTY>-AGG"}   (aggregate)
  - instrument     {drawing_norm, commodity_code, size, seq: 1}
  - everything else {drawing_norm, commodity_code, size, seq: 1..qty}

Drawing number and size are normalized; the commodity code keeps its case.
The identity *group* key drops ``seq`` so rows that only differ by sequence
share a display label.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pipetrak.config import (
    AGGREGATE_ID_SUFFIX,
    AGGREGATE_TYPES,
    COMPONENT_TYPES,
    NOSIZE_TOKEN,
    SINGLETON_TYPES,
    UNEXPLODED_TYPES,
)
from pipetrak.exceptions import InvalidIdentity, InvalidQuantity
from pipetrak.models.component_schema import ImportRow


_WHITESPACE_RE = re.compile(r"\s+")
_SIZE_STRIP_RE = re.compile(r"[\"'\s]")


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def normalize_drawing(raw: str) -> str:
    """Trim, upper-case and collapse internal whitespace: ' p-001  a ' -> 'P-001 A'."""
    return _WHITESPACE_RE.sub(" ", raw.strip().upper())


def normalize_size(raw: Optional[str]) -> str:
    """
    Strip quotes and spaces, '/' -> 'X', upper-case. Empty -> NOSIZE.

    '1/2"' -> '1X2', ' 2 ' -> '2', '' -> 'NOSIZE'.
    """
    if raw is None or not str(raw).strip():
        return NOSIZE_TOKEN
    return _SIZE_STRIP_RE.sub("", str(raw).strip()).replace("/", "X").upper()


def identity_token(identity_key: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    """Hashable, order-independent form of an identity key."""
    return tuple(sorted(identity_key.items()))


@dataclass(frozen=True)
class ResolvedIdentity:
    component_type: str
    identity_key: Dict[str, Any] = field(hash=False)
    identity_group_key: str

    @property
    def token(self) -> Tuple[Tuple[str, Any], ...]:
        return identity_token(self.identity_key)


# ---------------------------------------------------------------------------
# IdentityResolver
# ---------------------------------------------------------------------------

class IdentityResolver:
    """Derives identity and identity-group keys for import rows. Stateless."""

    def resolve(self, row: ImportRow, seq: Optional[int] = None, row_number: Optional[int] = None) -> ResolvedIdentity:
        """
        Map one row to its identity. ``seq`` is only meaningful for exploded
        types and defaults to 1.

        Raises InvalidIdentity when the type is unknown or a required key
        component is empty.
        """
        ctype = row.component_type
        if ctype not in COMPONENT_TYPES:
            raise InvalidIdentity(
                f"Invalid component type: {ctype or '<empty>'}. Expected one of: {', '.join(COMPONENT_TYPES)}",
                row=row_number,
                drawing=row.drawing,
            )

        cmdty = (row.cmdty_code or "").strip()
        if not cmdty:
            raise InvalidIdentity("Missing required field: cmdtyCode", row=row_number, drawing=row.drawing)

        if ctype in SINGLETON_TYPES:
            key_field = SINGLETON_TYPES[ctype]
            return ResolvedIdentity(ctype, {key_field: cmdty}, f"{ctype}:{cmdty}")

        if not row.drawing or not row.drawing.strip():
            raise InvalidIdentity("Missing required field: drawing", row=row_number, drawing=row.drawing)

        drawing_norm = normalize_drawing(row.drawing)
        size_norm = normalize_size(row.size)

        if ctype in AGGREGATE_TYPES:
            pipe_id = f"{drawing_norm}-{size_norm}-{cmdty}-{AGGREGATE_ID_SUFFIX}"
            return ResolvedIdentity(ctype, {"pipe_id": pipe_id}, pipe_id)

        group_key = f"{drawing_norm}-{size_norm}-{cmdty}"
        key = {
            "drawing_norm": drawing_norm,
            "commodity_code": cmdty,
            "size": size_norm,
            "seq": 1 if ctype in UNEXPLODED_TYPES else (seq or 1),
        }
        return ResolvedIdentity(ctype, key, group_key)

    def expand(self, row: ImportRow, row_number: Optional[int] = None) -> List[ResolvedIdentity]:
        """
        Identities a row produces: one per unit for exploded types, exactly
        one otherwise. Exploded rows need a whole, positive qty.
        """
        if row.component_type in AGGREGATE_TYPES or row.component_type in SINGLETON_TYPES \
                or row.component_type in UNEXPLODED_TYPES:
            return [self.resolve(row, row_number=row_number)]

        identity = self.resolve(row, row_number=row_number)
        if not math.isfinite(row.qty):
            raise InvalidQuantity(f"Invalid qty: must be a finite number, got {row.qty}", row=row_number, drawing=row.drawing)
        if row.qty != int(row.qty):
            raise InvalidQuantity(f"Invalid qty: must be integer, got {row.qty}", row=row_number, drawing=row.drawing)
        count = int(row.qty)
        if count <= 0:
            raise InvalidQuantity(f"Invalid qty: must be > 0, got {row.qty}", row=row_number, drawing=row.drawing)
        return [identity] + [self.resolve(row, seq=i, row_number=row_number) for i in range(2, count + 1)]


def validate_identity_key(component_type: str, identity_key: Dict[str, Any]) -> bool:
    """Check that a stored identity key has the shape its type requires."""
    if not isinstance(identity_key, dict):
        return False

    def _text(name: str) -> bool:
        value = identity_key.get(name)
        return isinstance(value, str) and len(value) > 0

    if component_type in SINGLETON_TYPES:
        return _text(SINGLETON_TYPES[component_type])

    if component_type in AGGREGATE_TYPES and "seq" not in identity_key:
        return _text("pipe_id")

    if component_type not in COMPONENT_TYPES:
        return False

    seq = identity_key.get("seq")
    return (
        _text("drawing_norm")
        and _text("commodity_code")
        and _text("size")
        and isinstance(seq, int)
        and not isinstance(seq, bool)
        and seq >= 0
    )
