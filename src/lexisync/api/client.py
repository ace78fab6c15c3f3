"""
HTTP client for the translation service.

All operations return result dataclasses from :mod:`lexisync.api.results`;
network failures, HTTP errors and malformed bodies are reported through
``success``/``error`` and never raised to the caller.
"""

import asyncio
import gzip
import json
import zlib
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar

import aiohttp

from ..models.server import Role
from ..models.translation import MAX_DOCUMENT_BYTES, serialize_document, parse_document
from ..storage.fingerprint import fingerprint
from ..utils.config import ApiConfig
from ..utils.errors import DocumentValidationError, error_for_status
from ..utils.logging import get_logger
from .results import (
    ApiResult,
    Contributor,
    ContributorListResult,
    DeviceFlowInit,
    DeviceFlowPoll,
    DownloadResult,
    LineageCheckResult,
    LineageTranslation,
    SearchResult,
    TranslationInfo,
    UpdateCheckResult,
    UploadRequest,
    UploadResult,
    VoteResult,
)


logger = get_logger("lexisync.api")

R = TypeVar("R", bound=ApiResult)

# ValueError covers bad JSON; OSError, EOFError and zlib.error cover bad gzip
_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ValueError, OSError, EOFError, zlib.error)


def _gunzip(body: bytes, limit: int = MAX_DOCUMENT_BYTES + 1) -> bytes:
    """
    Inflate a gzip body, producing at most ``limit`` bytes.

    Output past the document size limit is never materialized; the capped
    result is then rejected by document validation.
    """
    inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
    data = inflater.decompress(body, limit)
    if not inflater.eof and len(data) < limit:
        raise EOFError("Compressed response ended before the end-of-stream marker")
    return data


class TranslationApiClient:
    """Async client for the translation service REST API."""

    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or ApiConfig()
        self._token = token
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "TranslationApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def set_token(self, token: Optional[str]) -> None:
        """Set or clear the bearer token used for authenticated calls."""
        self._token = token or None

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    def translation_url(self, translation_id: int) -> str:
        return f"{self.config.website_url}/translations/{translation_id}"

    def merge_review_url(self, lineage_id: str) -> str:
        return f"{self.config.website_url}/translations/{lineage_id}/merge"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip",
                },
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                auto_decompress=False,
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[bytes] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Mapping[str, str], bytes]:
        """Send one request. Redirects are never followed."""
        request_headers = self.auth_headers()
        request_headers.update(headers or {})

        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            request_headers.setdefault("Content-Type", "application/json")

        session = self._get_session()
        async with session.request(
            method,
            f"{self.base_url}{path}",
            params=params,
            headers=request_headers,
            data=data,
            allow_redirects=False,
        ) as response:
            body = await response.read()
            if "gzip" in response.headers.get("Content-Encoding", "").lower():
                body = _gunzip(body)
            logger.debug("api_response", method=method, path=path, status=response.status, bytes=len(body))
            return response.status, response.headers, body

    @staticmethod
    def _json(body: bytes) -> Dict[str, Any]:
        if not body:
            return {}
        data = json.loads(body.decode("utf-8"))
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_message(data: Dict[str, Any], status: int) -> str:
        message = data.get("error_description") or data.get("error") or data.get("message") or f"HTTP {status}"
        errors = data.get("errors")
        if isinstance(errors, dict):
            details = [str(e) for messages in errors.values() for e in (messages if isinstance(messages, list) else [messages])]
            if details:
                message = ", ".join(details)
        return str(message)

    def _failure(self, result_cls: Type[R], operation: str, error: Exception) -> R:
        logger.warning("api_call_failed", operation=operation, error=str(error), error_type=type(error).__name__)
        return result_cls(success=False, error=str(error) or type(error).__name__)

    def _http_failure(self, result_cls: Type[R], status: int, body: bytes = b"") -> R:
        if status == 401:
            message = "Not authenticated"
        else:
            try:
                message = self._error_message(self._json(body), status)
            except ValueError:
                message = f"HTTP {status}"
        error = error_for_status(status, message)
        logger.warning(
            "api_http_error",
            result=result_cls.__name__,
            status=status,
            code=error.code,
            retryable=error.is_retryable,
        )
        return result_cls(success=False, error=message, status=status)

    # Search

    async def search_by_identifier(self, steam_id: str, target_language: str) -> SearchResult:
        """Search translations by the software's store identifier."""
        return await self._search({"steam_id": steam_id, "lang": target_language})

    async def search_by_name(self, game_name: str, target_language: str) -> SearchResult:
        """Search translations by software name."""
        return await self._search({"q": game_name, "lang": target_language})

    async def _search(self, params: Dict[str, str]) -> SearchResult:
        try:
            status, _, body = await self._request("GET", "/translations", params=params)
            if status != 200:
                return self._http_failure(SearchResult, status, body)

            data = self._json(body)
            translations = [TranslationInfo.from_dict(t) for t in data.get("translations") or []]
            return SearchResult(
                success=True,
                status=status,
                count=data.get("count") or len(translations),
                translations=translations,
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(SearchResult, "search", e)

    # Sync

    async def check_update(self, translation_id: int, local_hash: Optional[str]) -> UpdateCheckResult:
        """
        Ask whether the server copy differs from ``local_hash``.

        A 304 response means the server holds exactly ``local_hash``.
        """
        headers = {"If-None-Match": f'"{local_hash}"'} if local_hash else {}
        try:
            status, _, body = await self._request(
                "GET",
                f"/translations/{translation_id}/check",
                params={"hash": local_hash or ""},
                headers=headers,
            )
            if status == 304:
                return UpdateCheckResult(success=True, status=status, has_update=False, file_hash=local_hash)
            if status != 200:
                return self._http_failure(UpdateCheckResult, status, body)

            data = self._json(body)
            return UpdateCheckResult(
                success=True,
                status=status,
                has_update=bool(data.get("has_update")),
                file_hash=data.get("file_hash"),
                line_count=data.get("line_count") or 0,
                vote_count=data.get("vote_count") or 0,
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(UpdateCheckResult, "check_update", e)

    async def download(self, translation_id: int, cached_hash: Optional[str] = None) -> DownloadResult:
        """
        Download and validate a translation.

        Content that fails validation is rejected and never returned.
        """
        headers = {"If-None-Match": f'"{cached_hash}"'} if cached_hash else {}
        try:
            status, response_headers, body = await self._request(
                "GET", f"/translations/{translation_id}/download", headers=headers
            )
            if status == 304:
                return DownloadResult(success=True, status=status, not_modified=True, file_hash=cached_hash)
            if status != 200:
                return self._http_failure(DownloadResult, status, body)

            try:
                content = parse_document(body)
            except DocumentValidationError as e:
                logger.warning("download_rejected", translation_id=translation_id, error=e.message)
                return DownloadResult(
                    success=False,
                    status=status,
                    error=f"Invalid translation file: {e.message}",
                )

            etag = response_headers.get("ETag")
            file_hash = etag.replace("W/", "", 1).strip('"') if etag else fingerprint(content)

            logger.info("downloaded_translation", translation_id=translation_id, entries=len(content), file_hash=file_hash)
            return DownloadResult(success=True, status=status, content=content, file_hash=file_hash)
        except _TRANSPORT_ERRORS as e:
            return self._failure(DownloadResult, "download", e)

    # Lineage

    async def check_lineage(self, lineage_id: str) -> LineageCheckResult:
        """Look up a lineage and the caller's role in it. Requires authentication."""
        try:
            status, _, body = await self._request(
                "GET", "/translations/check-uuid", params={"uuid": lineage_id}
            )
            if status != 200:
                return self._http_failure(LineageCheckResult, status, body)

            data = self._json(body)
            role = Role.from_wire(data.get("role"))
            main = data.get("main") or None
            translation = data.get("translation") or None

            result = LineageCheckResult(
                success=True,
                status=status,
                exists=bool(data.get("exists")),
                role=role,
                main_username=main.get("uploader") if main else None,
                branches_count=data.get("branches_count") or 0,
            )
            if result.exists and role is not Role.NONE and translation:
                result.existing = LineageTranslation.from_dict(translation)
            if result.exists and main:
                result.main = LineageTranslation.from_dict(main)

            logger.debug("lineage_checked", lineage_id=lineage_id, exists=result.exists, role=role.value)
            return result
        except _TRANSPORT_ERRORS as e:
            return self._failure(LineageCheckResult, "check_lineage", e)

    async def list_contributors(self, lineage_id: str) -> ContributorListResult:
        """List branches contributing to a lineage. Requires authentication."""
        try:
            status, _, body = await self._request("GET", f"/translations/{lineage_id}/branches")
            if status != 200:
                return self._http_failure(ContributorListResult, status, body)

            data = self._json(body)
            contributors = [
                Contributor(
                    id=b.get("id") or 0,
                    username=(b.get("user") or {}).get("name"),
                    line_count=b.get("line_count") or 0,
                    human_count=b.get("human_count") or 0,
                    validated_count=b.get("validated_count") or 0,
                    ai_count=b.get("ai_count") or 0,
                    updated_at=b.get("updated_at"),
                )
                for b in data.get("branches") or []
            ]
            return ContributorListResult(success=True, status=status, contributors=contributors)
        except _TRANSPORT_ERRORS as e:
            return self._failure(ContributorListResult, "list_contributors", e)

    # Publishing

    async def upload(self, request: UploadRequest) -> UploadResult:
        """Upload a translation, gzip compressed. Requires authentication."""
        payload = json.dumps({
            "steam_id": request.steam_id,
            "game_name": request.game_name,
            "source_language": request.source_language,
            "target_language": request.target_language,
            "type": request.type,
            "status": request.status,
            "content": serialize_document(request.content, indent=None),
            "notes": request.notes,
        }, ensure_ascii=False).encode("utf-8")

        limit = self.config.max_upload_bytes
        if len(payload) > limit:
            mb = 1024 * 1024
            return UploadResult(
                success=False,
                error=f"Translation file too large ({len(payload) // mb}MB). Maximum is {limit // mb}MB.",
            )

        compressed = gzip.compress(payload)
        logger.info("uploading_translation", raw_bytes=len(payload), gzip_bytes=len(compressed))

        try:
            status, _, body = await self._request(
                "POST",
                "/translations",
                data=compressed,
                headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
            )
            if status not in (200, 201):
                return self._http_failure(UploadResult, status, body)

            translation = self._json(body).get("translation") or {}
            return UploadResult(
                success=True,
                status=status,
                translation_id=translation.get("id") or 0,
                file_hash=translation.get("file_hash"),
                line_count=translation.get("line_count") or 0,
                role=Role.from_wire(translation.get("role")),
                web_url=translation.get("web_url"),
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(UploadResult, "upload", e)

    async def vote(self, translation_id: int, value: int) -> VoteResult:
        """Up- or down-vote a translation. ``value`` must be 1 or -1."""
        if value not in (1, -1):
            return VoteResult(success=False, error="Vote value must be 1 or -1")
        if not self._token:
            return VoteResult(success=False, error="Not authenticated")

        try:
            status, _, body = await self._request(
                "POST", f"/translations/{translation_id}/vote", json_body={"value": value}
            )
            if status != 200:
                return self._http_failure(VoteResult, status, body)

            data = self._json(body)
            return VoteResult(
                success=True,
                status=status,
                vote_count=data.get("vote_count") or 0,
                user_vote=data.get("user_vote"),
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(VoteResult, "vote", e)

    # Device authorization

    async def init_device_flow(self) -> DeviceFlowInit:
        try:
            status, _, body = await self._request("POST", "/auth/device")
            if status != 200:
                return self._http_failure(DeviceFlowInit, status, body)

            data = self._json(body)
            return DeviceFlowInit(
                success=True,
                status=status,
                device_code=data.get("device_code"),
                user_code=data.get("user_code"),
                verification_uri=data.get("verification_uri"),
                expires_in=data.get("expires_in") or 900,
                interval=data.get("interval") or 5,
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(DeviceFlowInit, "init_device_flow", e)

    async def poll_device_flow(self, device_code: str) -> DeviceFlowPoll:
        """Poll once. ``pending`` is set while the user has not yet authorized."""
        try:
            status, _, body = await self._request(
                "POST", "/auth/device/poll", json_body={"device_code": device_code}
            )
            data = self._json(body)
            if status != 200:
                error = data.get("error")
                return DeviceFlowPoll(
                    success=False,
                    status=status,
                    pending=error == "authorization_pending",
                    error_code=error,
                    error=data.get("error_description") or error or f"HTTP {status}",
                )

            return DeviceFlowPoll(
                success=True,
                status=status,
                access_token=data.get("access_token"),
                user_name=(data.get("user") or {}).get("name"),
            )
        except _TRANSPORT_ERRORS as e:
            return self._failure(DeviceFlowPoll, "poll_device_flow", e)


__all__ = ['TranslationApiClient']
