"""Deterministic stable-id minting for shared-model entities.

The same canonical name under the same kind always maps to the same id
within a registry. A different canonical name that normalizes to an
already-used key gets a numbered suffix (``_2``, ``_3``) in first-seen
order. Nothing is ever reassigned or removed.
"""

import logging
import re
from enum import StrEnum

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s\-]+")
_DISALLOWED = re.compile(r"[^A-Z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


class EntityKind(StrEnum):
    """Kinds of shared-model entity, valued as they appear on the wire."""

    COMPONENT = "component"
    STATE_MODEL = "stateModel"
    EVENT = "event"
    DATA_FLOW = "dataFlow"

    @property
    def prefix(self) -> str:
        return ID_PREFIXES[self]


ID_PREFIXES: dict[EntityKind, str] = {
    EntityKind.COMPONENT: "COMP-",
    EntityKind.STATE_MODEL: "C-STATE-",
    EntityKind.EVENT: "E-",
    EntityKind.DATA_FLOW: "DF-",
}


def normalize_canonical_name(name: str) -> str:
    """Normalize a canonical name to its registry key.

    Upper-cases, turns whitespace and hyphen runs into a single underscore,
    drops anything else that is not alphanumeric, and trims underscores.

    Example:
        "Login Button" -> "LOGIN_BUTTON", " log-in!! " -> "LOG_IN"
    """
    normalized = _SEPARATORS.sub("_", name.strip().upper())
    normalized = _DISALLOWED.sub("", normalized)
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized)
    return normalized.strip("_")


def id_body(normalized: str) -> str:
    """Id body uses hyphens where the key uses underscores."""
    return normalized.replace("_", "-")


class IDRegistry:
    """Append-only map from (kind, normalized key, canonical name) to stable id.

    Scoped to a single discovery pass; create a new registry per run.
    """

    def __init__(self) -> None:
        # "kind:KEY" -> {canonical name: id}, insertion ordered
        self._ids: dict[str, dict[str, str]] = {}

    @staticmethod
    def _key(kind: EntityKind, normalized: str) -> str:
        return f"{kind.value}:{normalized}"

    def get(self, kind: EntityKind | str, normalized: str, canonical_name: str) -> str | None:
        """Return the id minted for this exact canonical name, if any."""
        names = self._ids.get(self._key(EntityKind(kind), normalized))
        return names.get(canonical_name) if names else None

    def count_for_key(self, kind: EntityKind | str, normalized: str) -> int:
        """How many distinct canonical names have been minted under this key."""
        return len(self._ids.get(self._key(EntityKind(kind), normalized), {}))

    def mint(self, canonical_name: str, kind: EntityKind | str) -> str:
        """Mint (or return the existing) stable id for a canonical name.

        Args:
            canonical_name: e.g. "Login Button", "user-authenticated".
            kind: Entity kind; supplies the id prefix.

        Returns:
            Stable id such as ``COMP-LOGIN-BUTTON`` or ``E-USER-AUTHENTICATED``.
            Names with nothing usable mint the bare prefix (``COMP``).
        """
        kind = EntityKind(kind)
        normalized = normalize_canonical_name(canonical_name)
        existing = self.get(kind, normalized, canonical_name)
        if existing is not None:
            return existing

        body = id_body(normalized)
        base_id = f"{kind.prefix}{body}" if body else kind.prefix.rstrip("-")
        names = self._ids.setdefault(self._key(kind, normalized), {})
        position = len(names) + 1
        stable_id = base_id if position == 1 else f"{base_id}_{position}"
        names[canonical_name] = stable_id

        if position > 1:
            logger.debug(
                "ID collision for %s '%s': minted %s (key %s already has %d name(s))",
                kind.value,
                canonical_name,
                stable_id,
                normalized,
                position - 1,
            )
        return stable_id

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Copy of every minted id, keyed "kind:KEY" then canonical name."""
        return {key: dict(names) for key, names in self._ids.items()}

    def __len__(self) -> int:
        return sum(len(names) for names in self._ids.values())


def mint_stable_id(canonical_name: str, kind: EntityKind | str, registry: IDRegistry) -> str:
    """Module-level convenience for ``registry.mint``."""
    return registry.mint(canonical_name, kind)
