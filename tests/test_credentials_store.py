"""Tests for the Credentials record and the on-disk CredentialsStore."""

from __future__ import annotations

import asyncio
import json
import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import make_credentials
from smartauth.auth.credentials import Credentials
from smartauth.auth.store import CredentialsStore, get_store, init_store
from smartauth.exceptions import ConfigurationError, StoreCorrupt


# ---------------------------------------------------------------------------
# Credentials tests
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_from_token_response(self) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        creds = Credentials.from_token_response(
            {"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600, "scope": "r w"},
            now=now,
        )
        assert creds.access_token == "AT1"
        assert creds.refresh_token == "RT1"
        assert creds.expires_at == now + timedelta(hours=1)
        assert creds.scope == "r w"

    def test_from_token_response_keeps_previous_refresh_token(self) -> None:
        previous = make_credentials(access_token="AT-old", refresh_token="RT1", scope="old-scope")
        creds = Credentials.from_token_response(
            {"access_token": "AT-new", "expires_in": 3600}, previous=previous
        )
        assert creds.access_token == "AT-new"
        assert creds.refresh_token == "RT1"
        assert creds.scope == "old-scope"

    def test_from_token_response_missing_refresh_token_raises(self) -> None:
        with pytest.raises(ValueError, match="refresh_token"):
            Credentials.from_token_response({"access_token": "AT1", "expires_in": 3600})

    def test_from_token_response_missing_expires_in_raises(self) -> None:
        with pytest.raises(KeyError):
            Credentials.from_token_response({"access_token": "AT1", "refresh_token": "RT1"})

    def test_empty_access_token_rejected(self) -> None:
        with pytest.raises(ValueError, match="access_token"):
            make_credentials(access_token="")

    def test_naive_expiry_rejected(self) -> None:
        with pytest.raises(ValueError, match="timezone-aware"):
            Credentials("AT1", "RT1", datetime(2026, 1, 1))

    def test_is_expired_true(self) -> None:
        assert make_credentials(expires_in=-100).is_expired()

    def test_is_expired_within_margin(self) -> None:
        # Expires in 4 minutes (< 5 minute default margin)
        creds = make_credentials(expires_in=240)
        assert creds.is_expired()
        assert not creds.is_expired(margin=60)

    def test_is_expired_false(self) -> None:
        assert not make_credentials(expires_in=3600).is_expired()

    def test_dict_round_trip(self) -> None:
        original = make_credentials()
        data = original.to_dict()
        assert set(data) == {"accessToken", "refreshToken", "expiresAt", "scope"}
        assert Credentials.from_dict(data) == original

    def test_from_dict_accepts_zulu_suffix(self) -> None:
        creds = Credentials.from_dict({
            "accessToken": "AT1",
            "refreshToken": "RT1",
            "expiresAt": "2026-01-01T00:00:00.000Z",
            "scope": "",
        })
        assert creds.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# CredentialsStore tests
# ---------------------------------------------------------------------------


class TestCredentialsStore:
    def test_load_missing_file(self, store: CredentialsStore) -> None:
        assert not store.path.exists()
        assert store.load("myProfile") is None

    def test_save_then_load(self, store: CredentialsStore) -> None:
        creds = make_credentials()
        store.save("myProfile", creds)
        assert store.load("myProfile") == creds

    def test_load_missing_profile(self, store: CredentialsStore) -> None:
        store.save("other", make_credentials())
        assert store.load("myProfile") is None

    def test_save_preserves_other_profiles(self, store: CredentialsStore) -> None:
        first = make_credentials(access_token="AT-a", refresh_token="RT-a")
        second = make_credentials(access_token="AT-b", refresh_token="RT-b")
        store.save("a", first)
        store.save("b", second)
        store.save("b", make_credentials(access_token="AT-b2", refresh_token="RT-b2"))

        assert store.load("a") == first
        assert store.load("b").access_token == "AT-b2"

    def test_file_format(self, store: CredentialsStore) -> None:
        creds = make_credentials()
        store.save("myProfile", creds)
        data = json.loads(store.path.read_text())
        assert data == {"myProfile": creds.to_dict()}

    def test_file_is_private_and_no_temp_files_left(self, store: CredentialsStore) -> None:
        store.save("myProfile", make_credentials())
        mode = stat.S_IMODE(store.path.stat().st_mode)
        assert mode == 0o600
        assert [p.name for p in store.path.parent.iterdir()] == ["credentials.json"]

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        store = CredentialsStore(tmp_path / "nested" / "dir" / "credentials.json")
        store.save("myProfile", make_credentials())
        assert store.path.exists()

    def test_empty_file_is_empty_store(self, store: CredentialsStore) -> None:
        store.path.write_text("")
        assert store.load("myProfile") is None
        assert store.load_all() == {}

    def test_invalid_json_raises(self, store: CredentialsStore) -> None:
        store.path.write_text("{not json")
        with pytest.raises(StoreCorrupt, match="invalid JSON"):
            store.load("myProfile")

    def test_non_object_raises(self, store: CredentialsStore) -> None:
        store.path.write_text("[1, 2, 3]")
        with pytest.raises(StoreCorrupt, match="not an object"):
            store.load("myProfile")

    def test_invalid_entry_raises(self, store: CredentialsStore) -> None:
        store.path.write_text(json.dumps({"myProfile": {"accessToken": "AT1"}}))
        with pytest.raises(StoreCorrupt, match="myProfile"):
            store.load("myProfile")

    def test_numeric_expiry_raises(self, store: CredentialsStore) -> None:
        store.path.write_text(json.dumps({
            "myProfile": {"accessToken": "AT1", "refreshToken": "RT1", "expiresAt": 1700000000},
        }))
        with pytest.raises(StoreCorrupt, match="ISO-8601"):
            store.load("myProfile")

    def test_non_string_token_raises(self, store: CredentialsStore) -> None:
        store.path.write_text(json.dumps({
            "myProfile": {"accessToken": ["AT1"], "refreshToken": "RT1", "expiresAt": "2026-01-01T00:00:00Z"},
        }))
        with pytest.raises(StoreCorrupt, match="accessToken"):
            store.load_all()

    def test_non_utf8_file_raises(self, store: CredentialsStore) -> None:
        store.path.write_bytes(b"\xff\xfe{")
        with pytest.raises(StoreCorrupt, match="UTF-8"):
            store.load("myProfile")
        with pytest.raises(StoreCorrupt):
            store.save("myProfile", make_credentials())
        assert store.path.read_bytes() == b"\xff\xfe{"

    def test_save_does_not_overwrite_corrupt_file(self, store: CredentialsStore) -> None:
        store.path.write_text("{not json")
        with pytest.raises(StoreCorrupt):
            store.save("myProfile", make_credentials())
        assert store.path.read_text() == "{not json"

    def test_load_all(self, store: CredentialsStore) -> None:
        store.save("a", make_credentials(access_token="AT-a"))
        store.save("b", make_credentials(access_token="AT-b"))
        profiles = store.load_all()
        assert sorted(profiles) == ["a", "b"]
        assert profiles["b"].access_token == "AT-b"

    def test_delete(self, store: CredentialsStore) -> None:
        kept = make_credentials(access_token="AT-keep")
        store.save("keep", kept)
        store.save("drop", make_credentials())

        assert store.delete("drop") is True
        assert store.load("drop") is None
        assert store.load("keep") == kept
        assert store.delete("drop") is False

    @pytest.mark.asyncio
    async def test_lock_is_per_profile(self, store: CredentialsStore) -> None:
        assert store.lock("a") is store.lock("a")
        assert store.lock("a") is not store.lock("b")

    def test_lock_usable_from_separate_event_loops(self, store: CredentialsStore) -> None:
        async def contend() -> None:
            lock = store.lock("a")

            async def waiter() -> None:
                async with lock:
                    pass

            async with lock:
                task = asyncio.ensure_future(waiter())
                await asyncio.sleep(0)
            await task

        asyncio.run(contend())
        asyncio.run(contend())

    @pytest.mark.asyncio
    async def test_login_registry(self, store: CredentialsStore) -> None:
        assert store.login_in_flight("a") is None
        release = asyncio.Event()
        starts = 0

        async def start() -> Credentials:
            nonlocal starts
            starts += 1
            await release.wait()
            return make_credentials()

        task = store.login_task("a", start)
        assert store.login_task("a", start) is task
        assert store.login_in_flight("a") is task
        assert store.login_in_flight("b") is None

        release.set()
        await task
        assert starts == 1
        assert store.login_in_flight("a") is None
        assert store.last_login("a") is task


class TestProcessWideStore:
    def test_get_store_before_init_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="credentials file not set"):
            get_store()

    def test_init_sets_path(self, tmp_path: Path) -> None:
        path = tmp_path / "creds.json"
        init_store(path)
        assert get_store().path == path

    def test_init_again_replaces_store(self, tmp_path: Path) -> None:
        init_store(tmp_path / "first.json")
        second = init_store(tmp_path / "second.json")
        assert get_store() is second
        assert get_store().path.name == "second.json"
