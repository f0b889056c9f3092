from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chibi_lab.config import AppConfig
from chibi_lab.db.repo.sqlite import SQLiteRecordStore
from chibi_lab.errors import ValidationRejectedError
from chibi_lab.image.codec import parse_data_uri, to_data_uri
from chibi_lab.library import Expression
from chibi_lab.session import Session
from chibi_lab.state import BASE_CHARACTER_IMAGE, LIBRARY_KEY, USER_TOKEN, LocalState

from conftest import NAMESPACE, StubBackend, png_bytes


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig.from_dict({"sync": {"poll_interval": 0.05}}, base_dir=tmp_path)


@pytest.mark.asyncio
async def test_defaults_to_local_mode(tmp_path: Path) -> None:
    async with Session(_config(tmp_path), StubBackend()) as session:
        assert session.mode == "local"
        assert session.library.library_key is None
    assert (tmp_path / ".chibi_lab" / "records.sqlite").exists()


@pytest.mark.asyncio
async def test_create_and_leave_cloud_library(tmp_path: Path) -> None:
    config = _config(tmp_path)
    async with Session(config, StubBackend()) as session:
        store = await session.create_cloud_library()
        key = store.library_key
        assert session.mode == "cloud"
        assert session.state.get(LIBRARY_KEY) == key
        created = await session.records.get(f"{NAMESPACE}/libraries/{key}/createdAt")
        assert isinstance(created, int)

    # A new session on the same device resumes the shared library.
    async with Session(config, StubBackend()) as session:
        assert session.mode == "cloud"
        assert session.library.library_key == key
        session.leave_cloud()
        assert session.mode == "local"
        assert LIBRARY_KEY not in session.state


@pytest.mark.asyncio
async def test_use_library_key_validates(tmp_path: Path) -> None:
    async with Session(_config(tmp_path), StubBackend()) as session:
        with pytest.raises(ValidationRejectedError):
            session.use_library_key("not.valid")
        assert session.mode == "local"


@pytest.mark.asyncio
async def test_switching_mode_disposes_subscription(tmp_path: Path) -> None:
    async with Session(_config(tmp_path), StubBackend(), watch=True) as session:
        session.use_library_key("lib-one")
        first = session._subscription
        await asyncio.sleep(0.1)
        session.use_local()
        assert first.closed
        last = session._subscription
    assert last.closed


@pytest.mark.asyncio
async def test_watch_tracks_cloud_collection(tmp_path: Path) -> None:
    async with Session(_config(tmp_path), StubBackend(), watch=True) as session:
        session.use_library_key("lib-watch")
        added = await session.library.add(Expression.create("wave", to_data_uri(png_bytes())))
        for _ in range(40):
            if session.expressions:
                break
            await asyncio.sleep(0.05)
        assert [item.id for item in session.expressions] == [added.id]


@pytest.mark.asyncio
async def test_confirm_rename_reset_base(tmp_path: Path) -> None:
    config = _config(tmp_path)
    await _issue_token(config, uses=2)
    async with Session(config, StubBackend()) as session:
        assert session.gate.can_generate
        outcome = await session.orchestrator.create_base_from_text("a tiny wizard")
        base = session.confirm_base(outcome)
        assert base.name == "a tiny wizard"
        assert session.base_character.image == outcome.image

        assert session.rename_base("Merlin").name == "Merlin"
        assert session.rename_base("   ").name == "Merlin"

        session.reset_base()
        assert session.base_character is None
        with pytest.raises(ValidationRejectedError):
            session.rename_base("nobody")


@pytest.mark.asyncio
async def test_promote_cloud_expression_copies_pixels(tmp_path: Path) -> None:
    pixels = png_bytes((33, 66, 99))
    async with Session(_config(tmp_path), StubBackend()) as session:
        session.use_library_key("lib-promote")
        session.confirm_base(to_data_uri(png_bytes()), "Hero")
        stored = await session.library.add(Expression.create("grin", to_data_uri(pixels)))
        assert stored.image.startswith("file://")

        base = await session.promote_to_base(stored.id)

        assert base.name == "Hero"
        assert base.image.startswith("data:image/png;base64,")
        assert parse_data_uri(base.image)[1] == pixels
        assert session.state.get(BASE_CHARACTER_IMAGE) == base.image


async def _issue_token(config: AppConfig, *, uses: int) -> None:
    records = SQLiteRecordStore(config.storage.database)
    await records.set(f"{NAMESPACE}/keys/tok", uses)
    LocalState(config.storage.state_file).set(USER_TOKEN, "tok")
