"""
Credential handling: session stores and the token lifecycle manager.
"""
from codegate.auth.store import SessionStore, InMemorySessionStore, JsonFileSessionStore
from codegate.auth.token_manager import TokenLifecycleManager

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "TokenLifecycleManager",
]
