"""
Tests for token storage and device flow login.
"""

import os
import stat

import pytest
from cryptography.fernet import Fernet

from lexisync.api.results import DeviceFlowInit, DeviceFlowPoll
from lexisync.auth.device_flow import DeviceFlowAuthenticator
from lexisync.auth.token_store import KEY_ENV_VAR, EncryptedFileTokenStore, MemoryTokenStore
from tests.fixtures import FakeDeviceFlowApi


class TestEncryptedFileTokenStore:
    """Test the Fernet-backed token file."""

    def test_round_trip(self, tmp_path):
        store = EncryptedFileTokenStore(tmp_path / "token")
        assert store.get_token() is None

        store.set_token("secret-token")

        assert store.get_token() == "secret-token"
        assert b"secret-token" not in store.path.read_bytes()
        assert store.key_path.exists()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_files_are_private(self, tmp_path):
        store = EncryptedFileTokenStore(tmp_path / "token")
        store.set_token("secret-token")

        for path in (store.path, store.key_path):
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_key_reused_across_instances(self, tmp_path):
        EncryptedFileTokenStore(tmp_path / "token").set_token("secret-token")
        assert EncryptedFileTokenStore(tmp_path / "token").get_token() == "secret-token"

    def test_wrong_key_reads_as_logged_out(self, tmp_path, monkeypatch):
        EncryptedFileTokenStore(tmp_path / "token").set_token("secret-token")

        monkeypatch.setenv(KEY_ENV_VAR, Fernet.generate_key().decode())
        assert EncryptedFileTokenStore(tmp_path / "token").get_token() is None

    def test_env_key(self, tmp_path, monkeypatch):
        monkeypatch.setenv(KEY_ENV_VAR, Fernet.generate_key().decode())
        store = EncryptedFileTokenStore(tmp_path / "token")
        store.set_token("secret-token")

        assert store.get_token() == "secret-token"
        assert not store.key_path.exists()

    def test_clear(self, tmp_path):
        store = EncryptedFileTokenStore(tmp_path / "token")
        store.set_token("secret-token")
        store.clear()

        assert store.get_token() is None
        store.clear()


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class TestDeviceFlowAuthenticator:
    """Test the polling loop."""

    @pytest.mark.asyncio
    async def test_login_success(self):
        api = FakeDeviceFlowApi([
            DeviceFlowPoll(success=False, pending=True, error="authorization_pending", error_code="authorization_pending"),
            DeviceFlowPoll(success=True, access_token="tok", user_name="carol"),
        ])
        store = MemoryTokenStore()
        sleep = FakeSleep()
        auth = DeviceFlowAuthenticator(api, store, sleep=sleep)
        shown = []
        changed = []
        auth.on_auth_changed(lambda: changed.append(True))

        result = await auth.login(on_code=shown.append)

        assert result.success
        assert result.user_name == "carol"
        assert store.get_token() == "tok"
        assert api.token == "tok"
        assert shown[0].user_code == "ABCD-EFGH"
        assert sleep.calls == [5, 5]
        assert changed == [True]

    @pytest.mark.asyncio
    async def test_slow_down_increases_interval(self):
        api = FakeDeviceFlowApi([
            DeviceFlowPoll(success=False, error="Polling too fast", error_code="slow_down"),
            DeviceFlowPoll(success=True, access_token="tok", user_name="carol"),
        ])
        sleep = FakeSleep()
        result = await DeviceFlowAuthenticator(api, MemoryTokenStore(), sleep=sleep).login()

        assert result.success
        assert sleep.calls == [5, 10]

    @pytest.mark.asyncio
    async def test_denied(self):
        api = FakeDeviceFlowApi([DeviceFlowPoll(success=False, error="access_denied", error_code="access_denied")])
        store = MemoryTokenStore()
        result = await DeviceFlowAuthenticator(api, store, sleep=FakeSleep()).login()

        assert not result.success
        assert result.error == "access_denied"
        assert store.get_token() is None

    @pytest.mark.asyncio
    async def test_expires(self):
        init = DeviceFlowInit(success=True, device_code="dev", user_code="X", expires_in=12, interval=5)
        api = FakeDeviceFlowApi([], init=init)
        sleep = FakeSleep()

        result = await DeviceFlowAuthenticator(api, MemoryTokenStore(), sleep=sleep).login()

        assert not result.success
        assert result.error == "Device code expired"
        assert api.poll_count == 3
        assert sum(sleep.calls) == 15

    @pytest.mark.asyncio
    async def test_init_failure(self):
        api = FakeDeviceFlowApi([], init=DeviceFlowInit(success=False, error="HTTP 503", status=503))
        result = await DeviceFlowAuthenticator(api, MemoryTokenStore(), sleep=FakeSleep()).login()

        assert not result.success
        assert result.error == "HTTP 503"
        assert api.poll_count == 0

    def test_restore_and_logout(self):
        api = FakeDeviceFlowApi([])
        store = MemoryTokenStore("saved")
        auth = DeviceFlowAuthenticator(api, store)
        changed = []
        auth.on_auth_changed(lambda: changed.append(True))

        assert auth.restore()
        assert api.token == "saved"

        auth.logout()
        assert api.token is None
        assert store.get_token() is None
        assert changed == [True]
        assert not auth.restore()
