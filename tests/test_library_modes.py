from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chibi_lab.errors import NotFoundError
from chibi_lab.image.codec import fetch_image_bytes, to_data_uri
from chibi_lab.library import CloudBackend, Expression, LibraryStore, LocalBackend

from conftest import png_bytes


@pytest.fixture(params=["local", "cloud"])
def store(request, records, assets, state) -> LibraryStore:
    if request.param == "local":
        return LibraryStore(LocalBackend(state))
    return LibraryStore(CloudBackend("lib-modes", records, assets))


@pytest.mark.asyncio
async def test_same_operations_same_visible_results(store: LibraryStore) -> None:
    pixels = {name: png_bytes((index * 40, 10, 10)) for index, name in enumerate(["a", "b", "c"])}
    added = {}
    for name, data in pixels.items():
        added[name] = await store.add(Expression.create(name, to_data_uri(data)))

    await store.toggle_favorite(added["b"].id)
    await store.rename(added["c"].id, "c2")
    await store.delete(added["a"].id)

    items = await store.list()
    assert [item.name for item in items] == ["b", "c2"]
    assert items[0].is_favorite and not items[1].is_favorite
    # The image field always resolves to the same pixels, inline or stored.
    assert fetch_image_bytes(items[0].image) == pixels["b"]
    assert fetch_image_bytes(items[1].image) == pixels["c"]

    await store.clear()
    assert await store.list() == []


@pytest.mark.asyncio
async def test_add_then_list_contains_entry(store: LibraryStore) -> None:
    data = png_bytes((1, 1, 1))
    added = await store.add(Expression.create("only", to_data_uri(data)))
    items = await store.list()
    assert [item.id for item in items] == [added.id]
    assert items[0].name == "only"
    assert fetch_image_bytes(items[0].image) == data


def test_mode_reporting(records, assets, state) -> None:
    local = LibraryStore(LocalBackend(state))
    cloud = LibraryStore(CloudBackend("lib-x", records, assets))
    assert (local.mode, local.is_cloud, local.library_key) == ("local", False, None)
    assert (cloud.mode, cloud.is_cloud, cloud.library_key) == ("cloud", True, "lib-x")


def test_unknown_backend_rejected() -> None:
    with pytest.raises(TypeError):
        LibraryStore(object())


@pytest.mark.asyncio
async def test_update_of_missing_expression_is_rejected(store: LibraryStore) -> None:
    kept = await store.add(Expression.create("kept", to_data_uri(png_bytes())))
    ghost = Expression.create("ghost", to_data_uri(png_bytes()))

    with pytest.raises(NotFoundError):
        await store.update(ghost)
    with pytest.raises(NotFoundError):
        await store.rename("no.such#id", "x")

    assert [item.id for item in await store.list()] == [kept.id]


@pytest.mark.asyncio
async def test_update_after_delete_does_not_revive(store: LibraryStore) -> None:
    added = await store.add(Expression.create("brief", to_data_uri(png_bytes())))
    await store.delete(added.id)

    with pytest.raises(NotFoundError):
        await store.update(added.renamed("back again"))
    assert await store.list() == []


@pytest.mark.asyncio
async def test_delete_of_unusable_id_is_a_no_op(store: LibraryStore) -> None:
    added = await store.add(Expression.create("stays", to_data_uri(png_bytes())))
    assert await store.delete("bad/id.with[chars]") is None
    assert [item.id for item in await store.list()] == [added.id]
