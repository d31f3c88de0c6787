"""Tests for the session stores."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from xeropay.auth.session_store import InMemorySessionStore, JSONFileSessionStore
from xeropay.errors import NotInitialized, SessionStoreError


class TestJSONFileSessionStore:
    @pytest.mark.asyncio
    async def test_load_before_save_raises(self, tmp_path: Path) -> None:
        store = JSONFileSessionStore(tmp_path / "xeroSession")
        with pytest.raises(NotInitialized):
            await store.load()
        assert await store.exists() is False

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path: Path, make_bundle) -> None:
        store = JSONFileSessionStore(tmp_path / "data" / "xeroSession")
        bundle = make_bundle()
        await store.save(bundle)

        assert await store.exists() is True
        assert await store.load() == bundle

    @pytest.mark.asyncio
    async def test_file_is_readable_json(self, tmp_path: Path, make_bundle) -> None:
        path = tmp_path / "xeroSession"
        store = JSONFileSessionStore(path)
        await store.save(make_bundle())

        data = json.loads(path.read_text())
        assert data["tokenSet"]["access_token"] == "access-1"
        assert [t["tenantId"] for t in data["tenants"]] == ["tenant-aaa", "tenant-bbb"]
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_overwrite_replaces_whole_bundle(self, tmp_path: Path, make_bundle) -> None:
        store = JSONFileSessionStore(tmp_path / "xeroSession")
        await store.save(make_bundle(access_token="first", extra={"old_only": 1}))
        await store.save(make_bundle(access_token="second"))

        loaded = await store.load()
        assert loaded.token_set.access_token == "second"
        assert "old_only" not in loaded.token_set.extra

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path: Path, make_bundle) -> None:
        store = JSONFileSessionStore(tmp_path / "xeroSession")
        for i in range(3):
            await store.save(make_bundle(access_token=f"access-{i}"))
        assert [p.name for p in tmp_path.iterdir()] == ["xeroSession"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_store_error(self, tmp_path: Path) -> None:
        path = tmp_path / "xeroSession"
        path.write_text('{"tokenSet": {"access_token": ')
        store = JSONFileSessionStore(path)
        with pytest.raises(SessionStoreError, match="corrupt"):
            await store.load()

    @pytest.mark.asyncio
    async def test_encrypted_round_trip(self, tmp_path: Path, make_bundle) -> None:
        path = tmp_path / "xeroSession"
        store = JSONFileSessionStore(path, encrypt=True)
        bundle = make_bundle()
        await store.save(bundle)

        assert "access-1" not in path.read_text()
        assert await store.load() == bundle
        # A fresh store instance derives the same key from the salt file
        assert await JSONFileSessionStore(path, encrypt=True).load() == bundle

    @pytest.mark.asyncio
    async def test_plain_file_with_encryption_enabled_fails(self, tmp_path: Path, make_bundle) -> None:
        path = tmp_path / "xeroSession"
        await JSONFileSessionStore(path).save(make_bundle())
        with pytest.raises(SessionStoreError, match="decrypted"):
            await JSONFileSessionStore(path, encrypt=True).load()


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_empty_store_raises(self) -> None:
        store = InMemorySessionStore()
        with pytest.raises(NotInitialized):
            await store.load()

    @pytest.mark.asyncio
    async def test_load_returns_saved_copy(self, make_bundle) -> None:
        store = InMemorySessionStore()
        bundle = make_bundle()
        await store.save(bundle)

        loaded = await store.load()
        assert loaded == bundle
        loaded.tenants[0].raw["tenantName"] = "mutated"
        assert (await store.load()).tenants[0].tenant_name == "Demo School"
        assert (await store.load()).tenants[0].raw["tenantName"] == "Demo School"
        assert store.save_count == 1
