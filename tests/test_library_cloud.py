from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chibi_lab.db.repo.sqlite import SQLiteRecordStore
from chibi_lab.errors import (
    AssetRelocationFailed,
    ConnectionFailedError,
    NotFoundError,
    ValidationRejectedError,
)
from chibi_lab.image.codec import fetch_image_bytes, to_data_uri
from chibi_lab.image.store.filesystem import FilesystemAssetStore
from chibi_lab.library import CloudBackend, Expression, LibraryStore, create_library_key, open_library
from chibi_lab.library.archival import relocate_asset

from conftest import NAMESPACE, png_bytes

KEY = "lib-test"
LIBRARY = f"{NAMESPACE}/libraries/{KEY}"


def _backend(records: SQLiteRecordStore, assets: FilesystemAssetStore) -> CloudBackend:
    return CloudBackend(KEY, records, assets)


async def _add(store: LibraryStore, name: str, color=(1, 2, 3)) -> Expression:
    return await store.add(Expression.create(name, to_data_uri(png_bytes(color))))


@pytest.mark.asyncio
async def test_create_library_key_writes_created_at(records: SQLiteRecordStore) -> None:
    key = await create_library_key(records)
    created = await records.get(f"{NAMESPACE}/libraries/{key}/createdAt")
    assert isinstance(created, int)


def test_invalid_library_key_rejected(records, assets) -> None:
    with pytest.raises(ValidationRejectedError):
        CloudBackend("bad.key", records, assets)
    with pytest.raises(ValidationRejectedError):
        CloudBackend("   ", records, assets)


@pytest.mark.asyncio
async def test_add_uploads_then_writes_record(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    png = png_bytes((5, 6, 7))
    stored = await store.add(Expression.create("Happy", to_data_uri(png)))

    assert stored.storage_path == f"expressions/{KEY}/{stored.id}.png"
    assert stored.image.startswith("file://")
    assert fetch_image_bytes(stored.image) == png

    record = await records.get(f"{LIBRARY}/expressions/{stored.id}")
    assert record["image"] == stored.image
    assert record["storagePath"] == stored.storage_path
    assert isinstance(record["createdAt"], int)

    listed = await store.list()
    assert [(item.id, item.name, item.image) for item in listed] == [(stored.id, "Happy", stored.image)]


@pytest.mark.asyncio
async def test_failed_upload_writes_no_record(records, assets, monkeypatch) -> None:
    async def broken_upload(path, payload):
        raise ConnectionFailedError("storage offline")

    monkeypatch.setattr(assets, "upload", broken_upload)
    store = LibraryStore(_backend(records, assets))
    with pytest.raises(ConnectionFailedError):
        await _add(store, "lost")
    assert await records.get(f"{LIBRARY}/expressions") is None


@pytest.mark.asyncio
async def test_update_overwrites_without_reupload(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    stored = await _add(store, "old name")
    await store.rename(stored.id, "new name")
    await store.toggle_favorite(stored.id)

    record = await records.get(f"{LIBRARY}/expressions/{stored.id}")
    assert record["name"] == "new name"
    assert record["isFavorite"] is True
    assert record["storagePath"] == stored.storage_path
    assert "createdAt" in record


@pytest.mark.asyncio
async def test_delete_archives_record_and_asset(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    stored = await _add(store, "Sad")

    outcome = await store.delete(stored.id)

    assert outcome.warning is None
    assert outcome.relocated
    assert await records.get(f"{LIBRARY}/expressions/{stored.id}") is None
    archived = await records.get(f"{LIBRARY}/deleted_expressions/{stored.id}")
    assert archived["storagePath"] == f"deleted_expressions/{KEY}/{stored.id}.png"
    assert isinstance(archived["deletedAt"], int)
    assert not assets.exists(stored.storage_path)
    assert assets.exists(archived["storagePath"])
    assert [item.id for item in await store.list_deleted()] == [stored.id]


@pytest.mark.asyncio
async def test_delete_missing_is_noop(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    assert await store.delete("nothing-here") is None
    assert await records.get(f"{LIBRARY}/deleted_expressions") is None


@pytest.mark.asyncio
async def test_delete_with_failed_relocation_still_archives(records, assets, monkeypatch) -> None:
    store = LibraryStore(_backend(records, assets))
    stored = await _add(store, "Angry")

    async def broken_download(path):
        raise ConnectionFailedError("storage offline")

    monkeypatch.setattr(assets, "download", broken_download)
    outcome = await store.delete(stored.id)

    assert isinstance(outcome.warning, AssetRelocationFailed)
    assert outcome.warning.expression_id == stored.id
    assert await records.get(f"{LIBRARY}/expressions/{stored.id}") is None
    archived = await records.get(f"{LIBRARY}/deleted_expressions/{stored.id}")
    assert archived["image"] == stored.image
    assert archived["storagePath"] == stored.storage_path
    assert assets.exists(stored.storage_path)


@pytest.mark.asyncio
async def test_relocate_without_storage_path_is_noop(records, assets) -> None:
    item = Expression(id="legacy", name="inline", image=to_data_uri(png_bytes()))
    outcome = await relocate_asset(_backend(records, assets), item)
    assert outcome.expression == item
    assert outcome.warning is None
    assert not outcome.relocated


@pytest.mark.asyncio
async def test_clear_archives_everything_in_one_step(records, assets, monkeypatch) -> None:
    store = LibraryStore(_backend(records, assets))
    added = [await _add(store, f"e{index}", (index, index, index)) for index in range(4)]
    failing = added[1]

    original_download = assets.download

    async def flaky_download(path):
        if path == failing.storage_path:
            raise ConnectionFailedError("flaky")
        return await original_download(path)

    monkeypatch.setattr(assets, "download", flaky_download)
    revision_before = await records.revision()

    outcomes = await store.clear()

    assert await records.revision() == revision_before + 1
    assert len(outcomes) == 4
    assert [o.expression.id for o in outcomes if o.warning is not None] == [failing.id]
    assert await records.get(f"{LIBRARY}/expressions") is None
    archived = await records.get(f"{LIBRARY}/deleted_expressions")
    assert set(archived) == {item.id for item in added}
    assert archived[failing.id]["storagePath"] == failing.storage_path
    for item in added:
        if item.id != failing.id:
            assert archived[item.id]["storagePath"].startswith("deleted_expressions/")
    assert await store.list() == []


@pytest.mark.asyncio
async def test_clear_empty_library(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    assert await store.clear() == []


@pytest.mark.asyncio
async def test_subscription_republishes_sorted_collection(records, assets) -> None:
    snapshots = []
    changed = asyncio.Event()

    def observe(items):
        snapshots.append(items)
        changed.set()

    async with open_library(_backend(records, assets), observe) as store:
        await asyncio.wait_for(changed.wait(), timeout=2)
        assert snapshots[-1] == []

        changed.clear()
        plain = await _add(store, "plain")
        await asyncio.wait_for(changed.wait(), timeout=2)

        changed.clear()
        fav = await _add(store, "fav")
        await store.toggle_favorite(fav.id)
        for _ in range(40):
            if snapshots[-1] and snapshots[-1][0].is_favorite:
                break
            await asyncio.sleep(0.05)
        assert [item.id for item in snapshots[-1]] == [fav.id, plain.id]


@pytest.mark.asyncio
async def test_subscription_sees_other_sessions(tmp_path: Path) -> None:
    db = tmp_path / "shared.sqlite"
    assets = FilesystemAssetStore(tmp_path / "assets")
    mine = CloudBackend(KEY, SQLiteRecordStore(db, poll_interval=0.05), assets)
    theirs = LibraryStore(CloudBackend(KEY, SQLiteRecordStore(db, poll_interval=0.05), assets))
    snapshots = []

    async with open_library(mine, snapshots.append):
        await asyncio.sleep(0.1)
        remote = await _add(theirs, "from elsewhere")
        for _ in range(40):
            if snapshots and snapshots[-1]:
                break
            await asyncio.sleep(0.05)
    assert [item.id for item in snapshots[-1]] == [remote.id]


@pytest.mark.asyncio
async def test_open_library_releases_subscription_on_error(records, assets) -> None:
    backend = _backend(records, assets)
    captured = {}
    original = records.subscribe

    def spy(path, on_change, on_error=None):
        captured["sub"] = original(path, on_change, on_error)
        return captured["sub"]

    records.subscribe = spy
    with pytest.raises(RuntimeError):
        async with open_library(backend, lambda items: None):
            raise RuntimeError("boom")
    assert captured["sub"].closed


@pytest.mark.asyncio
async def test_stale_update_from_another_session_keeps_archive(records, assets) -> None:
    mine = LibraryStore(_backend(records, assets))
    theirs = LibraryStore(_backend(records, assets))
    added = await _add(mine, "contested")
    stale = await mine.find(added.id)

    await theirs.delete(added.id)
    with pytest.raises(NotFoundError):
        await mine.update(stale.toggled_favorite())

    assert await records.get(f"{LIBRARY}/expressions/{added.id}") is None
    archived = await records.get(f"{LIBRARY}/deleted_expressions/{added.id}")
    assert archived["name"] == "contested"
    assert archived["isFavorite"] is False


@pytest.mark.parametrize("bad_id", ["a.b", "a/b", "x#1", "$y", "[z]", ""])
def test_unusable_expression_ids_are_not_found(records, assets, bad_id: str) -> None:
    backend = _backend(records, assets)
    with pytest.raises(NotFoundError):
        backend.live_record_path(bad_id)
    with pytest.raises(NotFoundError):
        backend.archived_asset_path(bad_id)


@pytest.mark.asyncio
async def test_clear_drops_entries_added_while_it_runs(records, assets) -> None:
    store = LibraryStore(_backend(records, assets))
    listed = await _add(store, "listed")
    real_download = assets.download

    async def download_then_race(path):
        await records.set(f"{LIBRARY}/expressions/late", {"id": "late", "name": "late", "image": "x"})
        return await real_download(path)

    assets.download = download_then_race
    outcomes = await store.clear()

    assert [outcome.expression.id for outcome in outcomes] == [listed.id]
    assert await records.get(f"{LIBRARY}/expressions") is None
    assert set(await records.get(f"{LIBRARY}/deleted_expressions")) == {listed.id}
