"""Tests for SessionStore persistence and bootstrap."""

import base64
import json

import pytest

from relaybot.errors import InvalidEncoding
from relaybot.session.bootstrap import bootstrap_session
from relaybot.session.credentials import CredentialDecoder
from relaybot.session.store import AuthState, SessionStore

from tests.conftest import FakeBlobStore, FakePasteService


class TestSessionStore:
    """Tests for SessionStore."""

    def test_persist_and_read_back_identical(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        payload = b'{"noiseKey": {"private": "abc"}, "registered": true}\n'

        store.persist(payload)

        assert store.exists()
        assert store.read_credentials() == payload

    def test_persist_creates_directory(self, tmp_path):
        store = SessionStore(tmp_path / "nested" / "session")
        store.persist(b"{}")
        assert store.creds_path.is_file()

    def test_persist_overwrites_without_temp_leftovers(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        store.persist(b'{"a": 1}')
        store.persist(b'{"a": 2}')

        assert store.read_credentials() == b'{"a": 2}'
        assert [p.name for p in store.session_dir.iterdir()] == ["creds.json"]

    def test_load_state_empty_directory(self, tmp_path):
        store = SessionStore(tmp_path / "session")

        state = store.load_state()

        assert state.creds == {}
        assert state.keys == {}
        assert not state.registered
        assert store.session_dir.is_dir()

    def test_load_state_with_non_json_creds(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        store.persist(b"\x00\x01binary")

        state = store.load_state()

        assert state.creds == {}

    def test_credentials_update_roundtrip(self, store):
        store.on_credentials_updated({
            "creds": {"me": {"id": "42@s.whatsapp.net"}, "registered": True},
            "keys": {"pre-key": {"1": {"public": "x"}, "2": {"public": "y"}}, "session": {"42.0": {"s": 1}}},
        })

        state = store.load_state()

        assert state.registered
        assert state.creds["me"]["id"] == "42@s.whatsapp.net"
        assert state.keys["pre-key"] == {"1": {"public": "x"}, "2": {"public": "y"}}
        assert state.keys["session"] == {"42.0": {"s": 1}}

    def test_credentials_update_deletes_null_keys(self, store):
        store.on_credentials_updated({"keys": {"pre-key": {"1": {"a": 1}, "2": {"b": 2}}}})
        store.on_credentials_updated({"keys": {"pre-key": {"1": None}}})

        state = store.load_state()

        assert state.keys["pre-key"] == {"2": {"b": 2}}

    def test_key_ids_with_separators_roundtrip(self, store):
        keys = {
            "session": {"254700000001.0:1": {"s": 1}, "254700000002.0": {"s": 2}},
            "app-state-sync-key": {"AAAA/bbb+c=": {"v": 1}},
            "sender-key": {"123-456@g.us::254700000001:2": {"k": 3}},
            "pre-key": {"1": {"public": "x"}},
        }

        store.on_credentials_updated({"keys": keys})

        assert store.load_state().keys == keys
        assert all("/" not in p.name and ":" not in p.name for p in store.session_dir.iterdir())

    def test_null_deletes_key_with_separators(self, store):
        store.on_credentials_updated({"keys": {"sender-key": {"1-2@g.us::3:4": {"k": 1}, "5@g.us::6": {"k": 2}}}})
        store.on_credentials_updated({"keys": {"sender-key": {"1-2@g.us::3:4": None}}})

        assert store.load_state().keys == {"sender-key": {"5@g.us::6": {"k": 2}}}

    def test_keys_only_update_keeps_creds(self, store):
        before = store.read_credentials()
        store.on_credentials_updated({"keys": {"app-state-sync-key": {"k1": {"v": 1}}}})
        assert store.read_credentials() == before

    def test_accepts_auth_state(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        store.on_credentials_updated(AuthState(creds={"registered": True}, keys={}))
        assert json.loads(store.read_credentials()) == {"registered": True}

    def test_purge(self, store):
        assert store.purge() is True
        assert not store.session_dir.exists()
        assert not store.exists()
        assert store.purge() is False


class TestBootstrap:
    """Tests for bootstrap_session."""

    @pytest.mark.asyncio
    async def test_existing_session_skips_decoding(self, store):
        blobs = FakeBlobStore()
        decoder = CredentialDecoder(blob_store=blobs, paste_service=FakePasteService())

        print_qr = await bootstrap_session(store, decoder, "XEON-XTECH~abc#def")

        assert print_qr is False
        assert blobs.calls == []

    @pytest.mark.asyncio
    async def test_decodes_and_persists(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        raw = b'{"registered": true}'
        decoder = CredentialDecoder(blob_store=FakeBlobStore(), paste_service=FakePasteService())

        print_qr = await bootstrap_session(store, decoder, base64.b64encode(raw).decode())

        assert print_qr is False
        assert store.read_credentials() == raw

    @pytest.mark.asyncio
    async def test_missing_credential_falls_back_to_pairing(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        decoder = CredentialDecoder(blob_store=FakeBlobStore(), paste_service=FakePasteService())

        assert await bootstrap_session(store, decoder, "") is True
        assert not store.exists()

    @pytest.mark.asyncio
    async def test_invalid_credential_propagates(self, tmp_path):
        store = SessionStore(tmp_path / "session")
        decoder = CredentialDecoder(blob_store=FakeBlobStore(), paste_service=FakePasteService())

        with pytest.raises(InvalidEncoding):
            await bootstrap_session(store, decoder, "%%% not base64 %%%")
        assert not store.exists()
