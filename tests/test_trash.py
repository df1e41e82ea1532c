"""Tests for the journaled trash manager."""

import itertools
import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from diskbin.errors import ErrorKind, ManifestCorrupt, NotFound, RestoreCollision
from diskbin.models import TrashManifest, TrashSource
from diskbin.system_trash import encode_system_id
from diskbin.trash import MANIFEST_NAME, TrashManager, parse_manifest, remove_path


@pytest.fixture
def system_trash(tmp_path):
    root = tmp_path / "system-trash"
    (root / "files").mkdir(parents=True)
    (root / "info").mkdir()
    return root


@pytest.fixture
def manager(tmp_path, system_trash):
    ticks = itertools.count(1_700_000_000_000, 1000)
    return TrashManager(
        tmp_path / "trash",
        system_trash,
        clock=lambda: next(ticks),
    )


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "work"
    ws.mkdir()
    return ws


def add_system_item(root: Path, name: str, content: bytes = b"old", deleted: str = "2020-01-01T00:00:00"):
    payload = root / "files" / name
    payload.write_bytes(content)
    (root / "info" / f"{name}.trashinfo").write_text(
        f"[Trash Info]\nPath=/home/user/{name}\nDeletionDate={deleted}\n"
    )
    return payload


def app_ids(manager):
    return [i.id for i in manager.list_trash_items() if i.source == TrashSource.APP]


class TestMoveToTrash:
    def test_moves_file_and_journals_it(self, manager, workspace):
        target = workspace / "notes.txt"
        target.write_text("hello")

        result = manager.move_to_trash(target)

        assert result
        assert result.success is True
        assert not target.exists()
        entry = manager.load_manifest().find(result.item_id)
        assert entry is not None
        assert entry.name == "notes.txt"
        assert entry.original_path == str(target)
        assert entry.stored_name == f"{result.item_id}_notes.txt"
        assert entry.size == 5
        assert entry.is_directory is False
        assert (manager.files_dir / entry.stored_name).read_text() == "hello"

    def test_directory_size_is_measured(self, manager, workspace):
        folder = workspace / "project"
        (folder / "src").mkdir(parents=True)
        (folder / "src" / "a.py").write_bytes(b"x" * 300)
        (folder / "b.txt").write_bytes(b"y" * 200)

        result = manager.move_to_trash(folder)

        entry = manager.load_manifest().find(result.item_id)
        assert entry.is_directory is True
        assert entry.size == 500

    def test_missing_path_fails_without_state_change(self, manager, workspace):
        result = manager.move_to_trash(workspace / "ghost.txt")

        assert not result
        assert result.error == ErrorKind.NOT_FOUND
        assert manager.load_manifest().items == []
        assert not manager.manifest_path.exists()

    def test_manifest_uses_record_field_names(self, manager, workspace):
        target = workspace / "a.txt"
        target.write_text("a")
        manager.move_to_trash(target)

        document = json.loads(manager.manifest_path.read_text())
        assert document["version"] == 1
        record = document["items"][0]
        assert set(record) == {
            "id",
            "name",
            "originalPath",
            "storedName",
            "trashedAt",
            "size",
            "isDirectory",
        }
        assert record["trashedAt"] == 1_700_000_000_000

    def test_ids_are_unique(self, manager, workspace):
        ids = set()
        for i in range(5):
            f = workspace / "same.txt"
            f.write_text(str(i))
            ids.add(manager.move_to_trash(f).item_id)
        assert len(ids) == 5
        assert len(list(manager.files_dir.iterdir())) == 5

    def test_refuses_to_trash_the_trash(self, manager, workspace):
        f = workspace / "a.txt"
        f.write_text("a")
        manager.move_to_trash(f)

        result = manager.move_to_trash(manager.root)
        assert not result
        assert result.error == ErrorKind.PERMISSION_DENIED
        assert manager.files_dir.exists()

    def test_journal_failure_moves_payload_back(self, manager, workspace):
        target = workspace / "keep.txt"
        target.write_text("precious")

        with patch.object(manager, "save_manifest", side_effect=OSError(28, "No space left")):
            result = manager.move_to_trash(target)

        assert not result
        assert target.read_text() == "precious"
        assert list(manager.files_dir.iterdir()) == []

    def test_concurrent_trash_calls_keep_every_entry(self, manager, workspace):
        files = []
        for i in range(20):
            f = workspace / f"f{i}.txt"
            f.write_text(str(i))
            files.append(f)

        threads = [threading.Thread(target=manager.move_to_trash, args=(f,)) for f in files]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(manager.load_manifest().items) == 20
        assert manager.orphaned_payloads() == []

    def test_managers_sharing_a_root_keep_every_entry(self, tmp_path, workspace):
        root = tmp_path / "shared"
        first, second = TrashManager(root), TrashManager(root)
        files = []
        for i in range(40):
            f = workspace / f"f{i}.txt"
            f.write_text(str(i))
            files.append(f)

        def trash_all(mgr, batch):
            for f in batch:
                assert mgr.move_to_trash(f)

        threads = [
            threading.Thread(target=trash_all, args=(first, files[::2])),
            threading.Thread(target=trash_all, args=(second, files[1::2])),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(first.load_manifest().items) == 40
        assert second.orphaned_payloads() == []

    def test_other_manager_waits_for_journal(self, tmp_path, workspace):
        root = tmp_path / "shared"
        holder, waiter = TrashManager(root), TrashManager(root)
        target = workspace / "late.txt"
        target.write_text("late")

        with holder._journal():
            worker = threading.Thread(target=waiter.move_to_trash, args=(target,))
            worker.start()
            worker.join(timeout=0.3)
            assert worker.is_alive()
            assert target.exists()

        worker.join(timeout=10)
        assert not worker.is_alive()
        assert [e.name for e in holder.load_manifest().items] == ["late.txt"]


class TestRestoreFromTrash:
    def test_round_trip(self, manager, workspace):
        folder = workspace / "photos"
        (folder / "2024").mkdir(parents=True)
        (folder / "2024" / "a.jpg").write_bytes(b"\x89JPG" * 10)
        (folder / "readme.md").write_text("hi")

        trashed = manager.move_to_trash(folder)
        assert not folder.exists()

        restored = manager.restore_from_trash(trashed.item_id)

        assert restored
        assert (folder / "2024" / "a.jpg").read_bytes() == b"\x89JPG" * 10
        assert (folder / "readme.md").read_text() == "hi"
        assert trashed.item_id not in app_ids(manager)
        assert list(manager.files_dir.iterdir()) == []

    def test_recreates_missing_parent(self, manager, workspace):
        nested = workspace / "a" / "b"
        nested.mkdir(parents=True)
        target = nested / "file.txt"
        target.write_text("x")

        result = manager.move_to_trash(target)
        (workspace / "a" / "b").rmdir()
        (workspace / "a").rmdir()

        assert manager.restore_from_trash(result.item_id)
        assert target.read_text() == "x"

    def test_collision_leaves_item_trashed(self, manager, workspace):
        target = workspace / "report.pdf"
        target.write_text("original")
        result = manager.move_to_trash(target)
        target.write_text("replacement")

        restored = manager.restore_from_trash(result.item_id)

        assert not restored
        assert restored.error == ErrorKind.RESTORE_COLLISION
        assert target.read_text() == "replacement"
        assert result.item_id in app_ids(manager)
        entry = manager.load_manifest().find(result.item_id)
        assert (manager.files_dir / entry.stored_name).read_text() == "original"

    def test_collision_raises_from_core_operation(self, manager, workspace):
        target = workspace / "x.txt"
        target.write_text("1")
        item_id = manager.trash(target).id
        target.write_text("2")

        with pytest.raises(RestoreCollision):
            manager.restore(item_id)

    def test_unknown_id(self, manager):
        result = manager.restore_from_trash("does-not-exist")
        assert not result
        assert result.error == ErrorKind.NOT_FOUND

    def test_missing_payload_keeps_entry(self, manager, workspace):
        target = workspace / "x.txt"
        target.write_text("1")
        entry = manager.trash(target)
        (manager.files_dir / entry.stored_name).unlink()

        with pytest.raises(NotFound):
            manager.restore(entry.id)
        assert manager.load_manifest().find(entry.id) is not None

    def test_system_id_is_rejected(self, manager, system_trash):
        payload = add_system_item(system_trash, "old.txt")
        system_id = encode_system_id(payload)

        result = manager.restore_from_trash(system_id)

        assert not result
        assert result.error == ErrorKind.INVALID_ID
        assert payload.read_bytes() == b"old"
        assert (system_trash / "info" / "old.txt.trashinfo").exists()


class TestPermanentlyDelete:
    def test_removes_payload_and_entry(self, manager, workspace):
        folder = workspace / "build"
        (folder / "out").mkdir(parents=True)
        (folder / "out" / "bundle.js").write_text("//")
        result = manager.move_to_trash(folder)
        entry = manager.load_manifest().find(result.item_id)

        deleted = manager.permanently_delete(result.item_id)

        assert deleted
        assert not (manager.files_dir / entry.stored_name).exists()
        assert result.item_id not in app_ids(manager)

    def test_payload_already_gone(self, manager, workspace):
        target = workspace / "x.txt"
        target.write_text("1")
        entry = manager.trash(target)
        (manager.files_dir / entry.stored_name).unlink()

        assert manager.permanently_delete(entry.id)
        assert manager.load_manifest().items == []

    def test_unknown_id(self, manager):
        result = manager.permanently_delete("nope")
        assert not result
        assert result.error == ErrorKind.NOT_FOUND

    def test_system_item(self, manager, system_trash):
        payload = add_system_item(system_trash, "old.txt")

        assert manager.permanently_delete(encode_system_id(payload))
        assert not payload.exists()
        assert not (system_trash / "info" / "old.txt.trashinfo").exists()

    def test_system_directory(self, manager, system_trash):
        payload = system_trash / "files" / "olddir"
        (payload / "nested").mkdir(parents=True)
        (payload / "nested" / "f").write_text("x")

        assert manager.permanently_delete(encode_system_id(payload))
        assert not payload.exists()

    def test_flat_system_trash_with_files_folder(self, tmp_path):
        flat = tmp_path / "flat-trash"
        (flat / "files").mkdir(parents=True)
        (flat / "files" / "inner.txt").write_text("inner")
        report = flat / "report.pdf"
        report.write_bytes(b"r")
        mgr = TrashManager(tmp_path / "trash", flat)

        assert mgr.permanently_delete(encode_system_id(report))
        assert not report.exists()
        assert mgr.permanently_delete(encode_system_id(flat / "files"))
        assert list(flat.iterdir()) == []

    def test_crafted_id_outside_system_trash(self, manager, workspace):
        victim = workspace / "important.txt"
        victim.write_text("do not delete")

        result = manager.permanently_delete(encode_system_id(victim))

        assert not result
        assert result.error == ErrorKind.INVALID_ID
        assert victim.read_text() == "do not delete"

    def test_crafted_id_with_parent_traversal(self, manager, system_trash, workspace):
        victim = workspace / "important.txt"
        victim.write_text("keep")
        sneaky = system_trash / "files" / ".." / ".." / "work" / "important.txt"

        result = manager.permanently_delete(encode_system_id(sneaky))

        assert not result
        assert victim.exists()

    def test_system_root_itself_is_rejected(self, manager, system_trash):
        result = manager.permanently_delete(encode_system_id(system_trash / "files"))
        assert not result
        assert (system_trash / "files").is_dir()

    def test_malformed_system_id(self, manager):
        result = manager.permanently_delete("system:***not-base64***")
        assert not result
        assert result.error == ErrorKind.INVALID_ID

    def test_system_id_without_system_trash(self, tmp_path):
        manager = TrashManager(tmp_path / "trash", None)
        result = manager.permanently_delete(encode_system_id(tmp_path / "x"))
        assert not result
        assert result.error == ErrorKind.INVALID_ID


class TestEmptyTrash:
    def test_empties_all_app_entries(self, manager, workspace):
        ids = []
        for i in range(4):
            f = workspace / f"f{i}.txt"
            f.write_text(str(i))
            ids.append(manager.move_to_trash(f).item_id)

        # One payload disappears out-of-band
        entry = manager.load_manifest().find(ids[1])
        (manager.files_dir / entry.stored_name).unlink()

        result = manager.empty_trash()

        assert result
        assert app_ids(manager) == []
        assert list(manager.files_dir.iterdir()) == []

    def test_removes_system_items(self, manager, system_trash):
        add_system_item(system_trash, "a.txt")
        add_system_item(system_trash, "b.txt")

        assert manager.empty_trash()
        assert list((system_trash / "files").iterdir()) == []
        assert list((system_trash / "info").iterdir()) == []

    def test_sweeps_orphaned_payloads(self, manager):
        manager.files_dir.mkdir(parents=True)
        orphan = manager.files_dir / "deadbeef_lost.txt"
        orphan.write_text("lost")

        assert manager.orphaned_payloads() == [orphan]
        manager.empty_trash()
        assert not orphan.exists()

    def test_failures_are_swallowed(self, manager, workspace):
        for i in range(3):
            f = workspace / f"f{i}.txt"
            f.write_text(str(i))
            manager.move_to_trash(f)

        calls = []

        def flaky_remove(path):
            calls.append(path)
            if len(calls) == 1:
                raise PermissionError(13, "Permission denied", str(path))
            remove_path(path)

        with patch("diskbin.trash.remove_path", side_effect=flaky_remove):
            result = manager.empty_trash()

        assert result
        assert "1 items could not be removed" in result.message
        assert len(calls) == 3
        assert manager.load_manifest().items == []

    def test_empty_when_nothing_trashed(self, manager):
        assert manager.empty_trash()
        assert manager.load_manifest().items == []


class TestListTrashItems:
    def test_merges_and_sorts_newest_first(self, manager, workspace, system_trash):
        add_system_item(system_trash, "ancient.txt", deleted="2001-01-01T00:00:00")
        for name in ("first.txt", "second.txt"):
            f = workspace / name
            f.write_text(name)
            manager.move_to_trash(f)

        items = manager.list_trash_items()

        assert [i.name for i in items] == ["second.txt", "first.txt", "ancient.txt"]
        assert [i.source for i in items] == [TrashSource.APP, TrashSource.APP, TrashSource.SYSTEM]
        assert items[2].original_path == "/home/user/ancient.txt"
        assert items[2].id.startswith("system:")

    def test_works_without_system_trash(self, tmp_path, workspace):
        manager = TrashManager(tmp_path / "trash", None)
        f = workspace / "a.txt"
        f.write_text("a")
        manager.move_to_trash(f)

        items = manager.list_trash_items()
        assert len(items) == 1
        assert items[0].source == TrashSource.APP

    def test_empty_listing(self, manager):
        assert manager.list_trash_items() == []


class TestManifest:
    def test_corrupt_manifest_is_treated_as_empty(self, manager):
        manager.root.mkdir(parents=True)
        manager.manifest_path.write_text("{not json")

        assert manager.list_trash_items() == []
        corrupt = manager.root / (MANIFEST_NAME + ".corrupt")
        assert corrupt.read_text() == "{not json"

    def test_legacy_list_manifest(self, manager):
        manager.root.mkdir(parents=True)
        manager.manifest_path.write_text(
            json.dumps(
                [
                    {
                        "id": "abc",
                        "name": "a.txt",
                        "originalPath": "/tmp/a.txt",
                        "storedName": "abc_a.txt",
                        "trashedAt": 5,
                        "size": 1,
                        "isDirectory": False,
                    }
                ]
            )
        )

        manifest = manager.load_manifest()
        assert manifest.find("abc").stored_name == "abc_a.txt"

    def test_parse_rejects_bad_records(self):
        with pytest.raises(ManifestCorrupt):
            parse_manifest(json.dumps({"items": [{"id": "x"}]}))

    def test_parse_rejects_scalars(self):
        with pytest.raises(ManifestCorrupt):
            parse_manifest("42")

    def test_save_is_atomic_replace(self, manager):
        manager.save_manifest(TrashManifest())
        leftovers = [p.name for p in manager.root.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []
        assert json.loads(manager.manifest_path.read_text()) == {"version": 1, "items": []}

    def test_failed_save_keeps_previous_manifest(self, manager, workspace):
        f = workspace / "a.txt"
        f.write_text("a")
        manager.move_to_trash(f)
        before = manager.manifest_path.read_text()

        with patch("os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                manager.save_manifest(TrashManifest())

        assert manager.manifest_path.read_text() == before
        assert [p for p in manager.root.iterdir() if p.name.endswith(".tmp")] == []
