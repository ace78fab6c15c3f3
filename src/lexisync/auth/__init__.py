"""Authentication: token storage and device flow login."""

from .token_store import TokenStore, MemoryTokenStore, EncryptedFileTokenStore
from .device_flow import DeviceFlowAuthenticator, LoginResult

__all__ = [
    "TokenStore",
    "MemoryTokenStore",
    "EncryptedFileTokenStore",
    "DeviceFlowAuthenticator",
    "LoginResult",
]
