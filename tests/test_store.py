"""Tests for inventory persistence."""

import pytest
import yaml
from conftest import NOW, make_entry

from repokeeper.errors import InventoryError
from repokeeper.inventory import Inventory
from repokeeper.models import EntryStatus, RepoType
from repokeeper.store import load_inventory, save_inventory


class TestLoadInventory:
    def test_absent_file_is_empty(self, tmp_path):
        inventory = load_inventory(tmp_path / "inventory.yml")
        assert len(inventory) == 0
        assert inventory.updated_at is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text("")
        assert len(load_inventory(path)) == 0

    def test_hand_written_file(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text(
            """\
updated_at: '2024-06-01T12:00:00'
entries:
  - repo_id: github.com/org/repo
    path: /code/repo
    remote_url: git@github.com:org/repo.git
    type: mirror
    status: missing
    labels:
      team: infra
"""
        )
        inventory = load_inventory(path)
        assert inventory.updated_at == NOW
        entry = inventory.entries[0]
        assert entry.type == RepoType.MIRROR
        assert entry.status == EntryStatus.MISSING
        assert entry.labels == {"team": "infra"}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text("entries: [oops\n")
        with pytest.raises(InventoryError):
            load_inventory(path)

    def test_invalid_entry(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text("entries:\n  - path: /code/repo\n")
        with pytest.raises(InventoryError, match="Invalid inventory entry"):
            load_inventory(path)

    def test_invalid_timestamp(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text("updated_at: yesterday\nentries: []\n")
        with pytest.raises(InventoryError, match="updated_at"):
            load_inventory(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "inventory.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(InventoryError):
            load_inventory(path)


class TestSaveInventory:
    def test_writes_sorted_entries(self, tmp_path):
        inventory = Inventory(
            [
                make_entry(tmp_path / "b", repo_id="z/repo"),
                make_entry(tmp_path / "a", repo_id="a/repo", annotations={"note": "x"}),
            ],
            updated_at=NOW,
        )
        path = tmp_path / "state" / "inventory.yml"

        save_inventory(inventory, path)

        raw = yaml.safe_load(path.read_text())
        assert raw["updated_at"] == "2024-06-01T12:00:00"
        assert [e["repo_id"] for e in raw["entries"]] == ["a/repo", "z/repo"]
        assert raw["entries"][0]["annotations"] == {"note": "x"}
        assert raw["entries"][0]["status"] == "present"
        assert "branch" not in raw["entries"][0]

    def test_reload_preserves_entries(self, tmp_path):
        inventory = Inventory(
            [make_entry(tmp_path / "a", branch="develop", type=RepoType.MIRROR, labels={"k": "v"})],
            updated_at=NOW,
        )
        path = tmp_path / "inventory.yml"

        save_inventory(inventory, path)
        loaded = load_inventory(path)

        assert [e.model_dump() for e in loaded] == [e.model_dump() for e in inventory]
        assert loaded.updated_at == NOW

    def test_header_comment(self, tmp_path):
        path = tmp_path / "inventory.yml"
        save_inventory(Inventory(), path)
        assert path.read_text().startswith("# repokeeper inventory")
