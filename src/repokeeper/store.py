"""Inventory persistence as YAML."""

import logging
from datetime import datetime
from pathlib import Path

import yaml
from pydantic import ValidationError

from repokeeper.errors import InventoryError
from repokeeper.inventory import Inventory
from repokeeper.models import InventoryEntry

logger = logging.getLogger(__name__)

INVENTORY_HEADER = """\
# repokeeper inventory - written by 'repokeeper scan', safe to edit by hand
# (labels, annotations and branch are preserved across scans)

"""


def load_inventory(path: Path) -> Inventory:
    """Load the inventory from YAML.

    An absent file is an empty inventory.

    Args:
        path: Inventory file.

    Returns:
        Loaded Inventory.

    Raises:
        InventoryError: If the file cannot be parsed or validated.
    """
    if not path.exists():
        logger.debug("no inventory at %s, starting empty", path)
        return Inventory()

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise InventoryError(f"Cannot read inventory {path}: {e}") from e

    if not isinstance(raw, dict):
        raise InventoryError(f"Inventory {path} must contain a mapping")

    updated_at = raw.get("updated_at")
    if updated_at is not None and not isinstance(updated_at, datetime):
        try:
            updated_at = datetime.fromisoformat(str(updated_at))
        except ValueError as e:
            raise InventoryError(f"Invalid updated_at in {path}: {updated_at!r}") from e

    try:
        entries = [InventoryEntry(**item) for item in raw.get("entries") or []]
    except (ValidationError, TypeError) as e:
        raise InventoryError(f"Invalid inventory entry in {path}: {e}") from e

    return Inventory(entries=entries, updated_at=updated_at)


def save_inventory(inventory: Inventory, path: Path) -> None:
    """Write the inventory as YAML, entries ordered by (repo_id, path).

    Args:
        inventory: Inventory to persist.
        path: Destination file; parent directories are created.
    """
    data = {
        "updated_at": inventory.updated_at.isoformat() if inventory.updated_at else None,
        "entries": [
            entry.model_dump(mode="json", exclude_none=True)
            for entry in inventory.sorted_entries()
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    path.write_text(INVENTORY_HEADER + content)
    logger.debug("wrote %d inventory entries to %s", len(inventory), path)
