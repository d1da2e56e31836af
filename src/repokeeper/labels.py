"""Inventory label selectors and label edits.

Selectors are comma-joined requirements: ``key`` matches entries that carry
the label, ``key=value`` matches entries whose label has exactly that value.
"""

from typing import NamedTuple


class LabelRequirement(NamedTuple):
    """One selector term; ``value`` is None for a presence check."""

    key: str
    value: str | None = None

    def matches(self, labels: dict[str, str]) -> bool:
        if self.key not in labels:
            return False
        return self.value is None or labels[self.key] == self.value


def validate_label_key(key: str) -> str:
    """Return ``key`` stripped.

    Raises:
        ValueError: If the key is empty or contains whitespace or ``=``.
    """
    key = key.strip()
    if not key:
        raise ValueError("label key cannot be empty")
    if "=" in key or any(ch.isspace() for ch in key):
        raise ValueError(f"invalid label key {key!r}: keys cannot contain whitespace or '='")
    return key


def parse_label_selector(raw: str | None) -> list[LabelRequirement]:
    """Parse ``team=platform,tier`` into requirements; empty input selects all.

    Raises:
        ValueError: If a key is invalid or the expression has no terms.
    """
    if raw is None or not raw.strip():
        return []

    requirements: list[LabelRequirement] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, value = part.split("=", 1)
            requirements.append(LabelRequirement(validate_label_key(key), value.strip()))
        else:
            requirements.append(LabelRequirement(validate_label_key(part)))

    if not requirements:
        raise ValueError("empty --selector expression")
    return requirements


def labels_match(labels: dict[str, str], requirements: list[LabelRequirement]) -> bool:
    """Whether ``labels`` satisfy every requirement."""
    return all(requirement.matches(labels) for requirement in requirements)


def parse_label_assignments(inputs: list[str]) -> dict[str, str]:
    """Parse ``key=value`` assignments; a later assignment of a key wins.

    Raises:
        ValueError: If an input has no ``=`` or an invalid key.
    """
    assignments: dict[str, str] = {}
    for item in inputs:
        if "=" not in item:
            raise ValueError(f"invalid label {item!r} (expected key=value)")
        key, value = item.split("=", 1)
        assignments[validate_label_key(key)] = value.strip()
    return assignments


def parse_label_keys(inputs: list[str]) -> list[str]:
    """Validate label keys to remove, keeping first-seen order without repeats."""
    keys: list[str] = []
    for item in inputs:
        key = validate_label_key(item)
        if key not in keys:
            keys.append(key)
    return keys
