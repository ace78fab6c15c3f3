"""
Tests for the translation service HTTP client.
"""

import gzip
import json
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from lexisync.api.client import TranslationApiClient, _gunzip
from lexisync.api.results import UploadRequest
from lexisync.models.server import Role
from lexisync.models.translation import Tag
from lexisync.storage.fingerprint import fingerprint
from lexisync.utils.config import ApiConfig
from tests.fixtures import TranslationFixtures


DOCUMENT = TranslationFixtures.create_document({
    "Start Game": {"v": "Commencer", "t": "H"},
    "Options": "Options",
})


class FakeService:
    """aiohttp application mimicking the translation service."""

    def __init__(self):
        self.requests = []
        self.uploads = []
        self.polls = 0
        self.app = web.Application()
        r = self.app.router
        r.add_get("/api/v1/translations", self.search)
        r.add_post("/api/v1/translations", self.upload)
        r.add_get("/api/v1/translations/check-uuid", self.check_uuid)
        r.add_get("/api/v1/translations/{id}/check", self.check)
        r.add_get("/api/v1/translations/{id}/download", self.download)
        r.add_get("/api/v1/translations/{id}/branches", self.branches)
        r.add_post("/api/v1/translations/{id}/vote", self.vote)
        r.add_post("/api/v1/auth/device", self.device)
        r.add_post("/api/v1/auth/device/poll", self.device_poll)

    async def search(self, request):
        self.requests.append(request)
        query = dict(request.query)
        return web.json_response({
            "count": 1,
            "translations": [{
                "id": 3,
                "game": {"name": query.get("q", "Quest"), "steam_id": query.get("steam_id")},
                "uploader": "alice",
                "source_language": "en",
                "target_language": query["lang"],
                "line_count": 120,
                "vote_count": 4,
                "human_count": 100,
                "file_uuid": TranslationFixtures.LINEAGE_ID,
            }],
        })

    async def check(self, request):
        self.requests.append(request)
        if request.headers.get("If-None-Match") == '"current"':
            return web.Response(status=304)
        if request.match_info["id"] == "500":
            return web.json_response({"error": "Internal error"}, status=500)
        return web.json_response({"has_update": True, "file_hash": "newer", "line_count": 2, "vote_count": 1})

    async def download(self, request):
        self.requests.append(request)
        translation_id = request.match_info["id"]
        if translation_id == "1":
            return web.Response(
                body=gzip.compress(DOCUMENT),
                headers={"Content-Encoding": "gzip", "ETag": 'W/"etag-hash"', "Content-Type": "application/json"},
            )
        if translation_id == "2":
            return web.Response(body=b'{"Hello": "no lineage"}', content_type="application/json")
        if translation_id == "3":
            if request.headers.get("If-None-Match") == '"cached"':
                return web.Response(status=304)
            return web.Response(body=DOCUMENT, content_type="application/json")
        if translation_id == "6":
            raise web.HTTPFound("/elsewhere")
        return web.json_response({"error": "Translation not found"}, status=404)

    async def check_uuid(self, request):
        self.requests.append(request)
        if request.headers.get("Authorization") != "Bearer tok":
            return web.json_response({"error": "Unauthenticated"}, status=401)
        return web.json_response({
            "exists": True,
            "role": "branch",
            "branches_count": 3,
            "translation": {"id": 11, "uploader": "me", "file_hash": "branch-hash", "line_count": 2},
            "main": {"id": 10, "uploader": "alice", "file_hash": "main-hash", "line_count": 5},
        })

    async def branches(self, request):
        self.requests.append(request)
        return web.json_response({"branches": [
            {"id": 11, "user": {"name": "me"}, "line_count": 2, "human_count": 1},
            {"id": 12, "user": {"name": "bob"}, "line_count": 7},
        ]})

    async def upload(self, request):
        self.requests.append(request)
        raw = await request.read()
        try:
            raw = gzip.decompress(raw)
        except OSError:
            # Already decoded by the server
            pass
        payload = json.loads(raw)
        self.uploads.append(payload)
        if payload.get("target_language") == "xx":
            return web.json_response({"errors": {"target_language": ["Unsupported language"]}}, status=422)
        return web.json_response({"translation": {
            "id": 9,
            "file_hash": "uploaded-hash",
            "line_count": 2,
            "role": "main",
            "web_url": "https://lexisync.dev/translations/9",
        }}, status=201)

    async def vote(self, request):
        self.requests.append(request)
        body = await request.json()
        return web.json_response({"vote_count": 5, "user_vote": body["value"]})

    async def device(self, request):
        return web.json_response({
            "device_code": "dev-1",
            "user_code": "WXYZ-1234",
            "verification_uri": "https://lexisync.dev/device",
            "expires_in": 600,
            "interval": 2,
        })

    async def device_poll(self, request):
        self.polls += 1
        body = await request.json()
        assert body["device_code"] == "dev-1"
        if self.polls == 1:
            return web.json_response({"error": "authorization_pending"}, status=400)
        if self.polls == 2:
            return web.json_response({"error": "slow_down", "error_description": "Polling too fast"}, status=400)
        if self.polls == 3:
            return web.json_response({"error": "access_denied", "error_description": "User denied"}, status=400)
        return web.json_response({"access_token": "new-token", "user": {"name": "carol"}})


@asynccontextmanager
async def service_client(token="tok", **config):
    service = FakeService()
    server = TestServer(service.app)
    await server.start_server()
    api_config = ApiConfig(base_url=str(server.make_url("/api/v1")), **config)
    try:
        async with TranslationApiClient(api_config, token=token) as client:
            yield service, client
    finally:
        await server.close()


class TestSearch:
    """Test translation search."""

    @pytest.mark.asyncio
    async def test_search_by_name(self):
        async with service_client() as (service, client):
            result = await client.search_by_name("Quest", "fr")

        assert result.success
        assert result.count == 1
        info = result.translations[0]
        assert info.game_name == "Quest"
        assert info.target_language == "fr"
        assert info.file_uuid == TranslationFixtures.LINEAGE_ID
        assert service.requests[0].headers["Accept"] == "application/json"
        assert "lexisync" in service.requests[0].headers["User-Agent"]

    @pytest.mark.asyncio
    async def test_search_by_identifier(self):
        async with service_client() as (service, client):
            result = await client.search_by_identifier("440", "de")

        assert result.success
        assert service.requests[0].query["steam_id"] == "440"
        assert result.translations[0].game_steam_id == "440"


class TestUpdates:
    """Test update checks and downloads."""

    @pytest.mark.asyncio
    async def test_check_not_modified(self):
        async with service_client() as (service, client):
            result = await client.check_update(1, "current")

        assert result.success
        assert not result.has_update
        assert result.file_hash == "current"
        assert service.requests[0].query["hash"] == "current"

    @pytest.mark.asyncio
    async def test_check_has_update(self):
        async with service_client() as (_, client):
            result = await client.check_update(1, "stale")

        assert result.has_update
        assert result.file_hash == "newer"
        assert result.line_count == 2

    @pytest.mark.asyncio
    async def test_check_server_error(self):
        async with service_client() as (_, client):
            result = await client.check_update(500, "stale")

        assert not result.success
        assert result.status == 500
        assert result.error == "Internal error"

    @pytest.mark.asyncio
    async def test_download_gzip_with_etag(self):
        async with service_client() as (service, client):
            result = await client.download(1)

        assert result.success
        assert result.file_hash == "etag-hash"
        assert result.content.get("Start Game").tag is Tag.HUMAN
        assert service.requests[0].headers["Accept-Encoding"] == "gzip"

    @pytest.mark.asyncio
    async def test_download_without_etag_uses_fingerprint(self):
        async with service_client() as (_, client):
            result = await client.download(3)

        assert result.success
        assert result.file_hash == fingerprint(result.content)

    @pytest.mark.asyncio
    async def test_download_not_modified(self):
        async with service_client() as (_, client):
            result = await client.download(3, cached_hash="cached")

        assert result.success
        assert result.not_modified
        assert result.content is None
        assert result.file_hash == "cached"

    @pytest.mark.asyncio
    async def test_download_rejects_invalid_document(self):
        async with service_client() as (_, client):
            result = await client.download(2)

        assert not result.success
        assert result.content is None
        assert result.error.startswith("Invalid translation file")

    @pytest.mark.asyncio
    async def test_download_not_found(self):
        async with service_client() as (_, client):
            result = await client.download(99)

        assert not result.success
        assert result.status == 404
        assert result.error == "Translation not found"

    @pytest.mark.asyncio
    async def test_redirects_not_followed(self):
        async with service_client() as (service, client):
            result = await client.download(6)

        assert not result.success
        assert result.status == 302
        assert len(service.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        service = FakeService()
        server = TestServer(service.app)
        await server.start_server()
        url = str(server.make_url("/api/v1"))
        await server.close()

        async with TranslationApiClient(ApiConfig(base_url=url, timeout=2.0)) as client:
            result = await client.download(1)

        assert not result.success
        assert result.status is None
        assert result.error


class TestLineage:
    """Test lineage lookups."""

    @pytest.mark.asyncio
    async def test_check_lineage(self):
        async with service_client() as (service, client):
            result = await client.check_lineage(TranslationFixtures.LINEAGE_ID)

        assert result.success
        assert result.exists
        assert result.role is Role.BRANCH
        assert result.existing.id == 11
        assert result.main.id == 10
        assert result.main_username == "alice"
        assert result.branches_count == 3
        assert service.requests[0].query["uuid"] == TranslationFixtures.LINEAGE_ID

    @pytest.mark.asyncio
    async def test_check_lineage_unauthenticated(self):
        async with service_client(token=None) as (_, client):
            result = await client.check_lineage(TranslationFixtures.LINEAGE_ID)

        assert not result.success
        assert result.auth_failed
        assert result.error == "Not authenticated"

    @pytest.mark.asyncio
    async def test_list_contributors(self):
        async with service_client() as (_, client):
            result = await client.list_contributors(TranslationFixtures.LINEAGE_ID)

        assert result.success
        assert [c.username for c in result.contributors] == ["me", "bob"]


class TestPublishing:
    """Test uploads and votes."""

    def _request(self, **kwargs):
        return UploadRequest(
            content=TranslationFixtures.create_map({"Start Game": ("Commencer", Tag.HUMAN)}),
            source_language="en",
            target_language=kwargs.pop("target_language", "fr"),
            game_name="Quest",
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_upload(self):
        async with service_client() as (service, client):
            result = await client.upload(self._request(notes="first pass"))

        assert result.success
        assert result.translation_id == 9
        assert result.file_hash == "uploaded-hash"
        assert result.role is Role.MAIN
        assert service.requests[0].headers["Content-Encoding"] == "gzip"
        assert service.requests[0].headers["Authorization"] == "Bearer tok"

        payload = service.uploads[0]
        assert payload["game_name"] == "Quest"
        assert payload["notes"] == "first pass"
        content = json.loads(payload["content"])
        assert content["_uuid"] == TranslationFixtures.LINEAGE_ID
        assert content["Start Game"] == {"v": "Commencer", "t": "H"}

    @pytest.mark.asyncio
    async def test_upload_validation_errors(self):
        async with service_client() as (_, client):
            result = await client.upload(self._request(target_language="xx"))

        assert not result.success
        assert result.status == 422
        assert result.error == "Unsupported language"

    @pytest.mark.asyncio
    async def test_upload_too_large(self):
        async with service_client(max_upload_bytes=64) as (service, client):
            result = await client.upload(self._request())

        assert not result.success
        assert "too large" in result.error
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_vote(self):
        async with service_client() as (_, client):
            result = await client.vote(9, -1)

        assert result.success
        assert result.vote_count == 5
        assert result.user_vote == -1

    @pytest.mark.asyncio
    async def test_vote_validation(self):
        async with service_client() as (service, client):
            bad_value = await client.vote(9, 2)
            client.set_token(None)
            no_token = await client.vote(9, 1)

        assert not bad_value.success
        assert no_token.error == "Not authenticated"
        assert service.requests == []


class TestDeviceFlowEndpoints:
    """Test device authorization endpoints."""

    @pytest.mark.asyncio
    async def test_device_flow(self):
        async with service_client(token=None) as (_, client):
            init = await client.init_device_flow()
            pending = await client.poll_device_flow(init.device_code)
            slow = await client.poll_device_flow(init.device_code)
            denied = await client.poll_device_flow(init.device_code)
            granted = await client.poll_device_flow(init.device_code)

        assert init.success
        assert init.user_code == "WXYZ-1234"
        assert init.interval == 2
        assert pending.pending and not pending.success
        assert slow.error_code == "slow_down"
        assert slow.error == "Polling too fast"
        assert not denied.pending
        assert denied.error == "User denied"
        assert denied.error_code == "access_denied"
        assert granted.success
        assert granted.access_token == "new-token"
        assert granted.user_name == "carol"


class TestCompressedBodies:
    """Test gzip inflation limits."""

    def test_inflates_whole_body(self):
        assert _gunzip(gzip.compress(DOCUMENT)) == DOCUMENT

    def test_output_capped(self):
        """A highly compressible body stops at the limit."""
        bomb = gzip.compress(b"0" * 1_000_000)
        data = _gunzip(bomb, limit=1025)
        assert len(data) == 1025

    def test_truncated_stream(self):
        compressed = gzip.compress(DOCUMENT)
        with pytest.raises(EOFError):
            _gunzip(compressed[: len(compressed) // 2])


class TestUrls:

    def test_web_urls(self):
        client = TranslationApiClient(ApiConfig(website_url="https://lexisync.dev/"))
        assert client.translation_url(9) == "https://lexisync.dev/translations/9"
        assert client.merge_review_url("abc") == "https://lexisync.dev/translations/abc/merge"
        assert client.auth_headers() == {}
        client.set_token("t")
        assert client.auth_headers() == {"Authorization": "Bearer t"}
