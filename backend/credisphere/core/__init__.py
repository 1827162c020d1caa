from credisphere.core.config import Settings, get_settings
from credisphere.core.database import Base, get_db, async_session_maker, engine
from credisphere.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from credisphere.core.session import AuthEvent, AuthEventChannel, Session

__all__ = [
    "Settings",
    "get_settings",
    "Base",
    "get_db",
    "async_session_maker",
    "engine",
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "AuthEvent",
    "AuthEventChannel",
    "Session",
]
