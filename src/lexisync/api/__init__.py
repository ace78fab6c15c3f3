"""Remote translation service client."""

from .client import TranslationApiClient
from .results import UploadRequest

__all__ = ["TranslationApiClient", "UploadRequest"]
