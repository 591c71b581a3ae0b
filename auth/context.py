"""
auth/context.py -- The per-client session handle.

AuthSession is the explicit replacement for a global "current user": one
instance per client context, passed to whatever needs the caller's identity.
Its lifecycle is documented and short:

  bootstrap()  once at client start; loads the persisted blob and either
               populates the session or clears the stale copy
  login() / register()
               replace the session and overwrite the persisted blob wholesale
  logout()     clears both; calling it again is a no-op

The persisted blob lives in a SessionCache (cache/store.py for the CLI).
The HTTP API does not use this class: there, the session cookie is the
persisted blob and each request bootstraps from it (auth/dependencies.py).
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import Identity, Session
from auth.service import AuthService

logger = logging.getLogger("shelfguard.auth")


class SessionCache(Protocol):
    def load(self) -> str | None: ...

    def save(self, blob: str) -> None: ...

    def clear(self) -> None: ...


class AuthSession:
    """Holds the current Session (or None) for one client context."""

    def __init__(self, service: AuthService, cache: SessionCache) -> None:
        self._service = service
        self._cache = cache
        self._session: Session | None = None

    @property
    def identity(self) -> Identity | None:
        return self._session.identity if self._session else None

    def current_session(self) -> Session | None:
        return self._session

    def bootstrap(self) -> Session | None:
        blob = self._cache.load()
        session = self._service.bootstrap(blob)
        if session is None and blob is not None:
            self._cache.clear()
            logger.info("Cleared stale persisted session")
        self._session = session
        return session

    async def register(self, email: str, password: str, name: str) -> Identity:
        identity, session = await self._service.register(email, password, name)
        self._adopt(session)
        return identity

    async def login(self, email: str, password: str) -> Identity:
        identity, session = await self._service.login(email, password)
        self._adopt(session)
        return identity

    def logout(self) -> None:
        if self._session is not None:
            logger.info("Logged out %s", self._session.identity.email)
        self._session = None
        self._cache.clear()

    def _adopt(self, session: Session) -> None:
        self._cache.save(session.token)
        self._session = session
