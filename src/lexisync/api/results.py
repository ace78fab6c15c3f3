"""
Result types returned by the remote API client.

Every call returns one of these instead of raising. ``success`` is False on
any failure, with ``error`` holding a human-readable message and ``status``
the HTTP status when one was received.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.server import Role
from ..models.translation import TranslationMap


@dataclass
class ApiResult:
    success: bool = False
    error: Optional[str] = None
    status: Optional[int] = None

    @property
    def auth_failed(self) -> bool:
        return self.status in (401, 403)


@dataclass
class TranslationInfo:
    """Public listing of a translation on the server."""
    id: int = 0
    game_name: Optional[str] = None
    game_steam_id: Optional[str] = None
    uploader: Optional[str] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    line_count: int = 0
    status: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    vote_count: int = 0
    download_count: int = 0
    human_count: int = 0
    validated_count: int = 0
    ai_count: int = 0
    capture_count: int = 0
    file_hash: Optional[str] = None
    file_uuid: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslationInfo":
        game = data.get("game") or {}
        return cls(
            id=data.get("id") or 0,
            game_name=game.get("name"),
            game_steam_id=game.get("steam_id"),
            uploader=data.get("uploader"),
            source_language=data.get("source_language"),
            target_language=data.get("target_language"),
            line_count=data.get("line_count") or 0,
            status=data.get("status"),
            type=data.get("type"),
            notes=data.get("notes"),
            vote_count=data.get("vote_count") or 0,
            download_count=data.get("download_count") or 0,
            human_count=data.get("human_count") or 0,
            validated_count=data.get("validated_count") or 0,
            ai_count=data.get("ai_count") or 0,
            capture_count=data.get("capture_count") or 0,
            file_hash=data.get("file_hash"),
            file_uuid=data.get("file_uuid"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class SearchResult(ApiResult):
    count: int = 0
    translations: List[TranslationInfo] = field(default_factory=list)


@dataclass
class UpdateCheckResult(ApiResult):
    has_update: bool = False
    file_hash: Optional[str] = None
    line_count: int = 0
    vote_count: int = 0


@dataclass
class DownloadResult(ApiResult):
    not_modified: bool = False
    content: Optional[TranslationMap] = None
    file_hash: Optional[str] = None


@dataclass
class LineageTranslation:
    """Translation referenced by a lineage lookup."""
    id: int = 0
    uploader: Optional[str] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    type: Optional[str] = None
    line_count: int = 0
    file_hash: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineageTranslation":
        return cls(
            id=data.get("id") or 0,
            uploader=data.get("uploader"),
            source_language=data.get("source_language"),
            target_language=data.get("target_language"),
            type=data.get("type"),
            line_count=data.get("line_count") or 0,
            file_hash=data.get("file_hash"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class LineageCheckResult(ApiResult):
    exists: bool = False
    role: Role = Role.NONE
    main_username: Optional[str] = None
    branches_count: int = 0
    # The caller's own translation when role is MAIN or BRANCH
    existing: Optional[LineageTranslation] = None
    # The lineage's main translation, fork source when role is NONE
    main: Optional[LineageTranslation] = None


@dataclass
class Contributor:
    id: int = 0
    username: Optional[str] = None
    line_count: int = 0
    human_count: int = 0
    validated_count: int = 0
    ai_count: int = 0
    updated_at: Optional[str] = None


@dataclass
class ContributorListResult(ApiResult):
    contributors: List[Contributor] = field(default_factory=list)


@dataclass
class UploadRequest:
    """Metadata and content for a new or updated translation."""
    content: TranslationMap
    source_language: str
    target_language: str
    game_name: Optional[str] = None
    steam_id: Optional[str] = None
    type: str = "ai"
    status: str = "in_progress"
    notes: Optional[str] = None


@dataclass
class UploadResult(ApiResult):
    translation_id: int = 0
    file_hash: Optional[str] = None
    line_count: int = 0
    role: Role = Role.NONE
    web_url: Optional[str] = None


@dataclass
class VoteResult(ApiResult):
    vote_count: int = 0
    user_vote: Optional[int] = None


@dataclass
class DeviceFlowInit(ApiResult):
    device_code: Optional[str] = None
    user_code: Optional[str] = None
    verification_uri: Optional[str] = None
    expires_in: int = 900
    interval: int = 5


@dataclass
class DeviceFlowPoll(ApiResult):
    pending: bool = False
    error_code: Optional[str] = None
    access_token: Optional[str] = None
    user_name: Optional[str] = None


__all__ = [
    'ApiResult',
    'TranslationInfo',
    'SearchResult',
    'UpdateCheckResult',
    'DownloadResult',
    'LineageTranslation',
    'LineageCheckResult',
    'Contributor',
    'ContributorListResult',
    'UploadRequest',
    'UploadResult',
    'VoteResult',
    'DeviceFlowInit',
    'DeviceFlowPoll',
]
