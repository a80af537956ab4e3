"""Identity provider and the readiness gate syncs wait on."""

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[str]], None]


class IdentityProvider(Protocol):
    def get_current_principal(self) -> Optional[str]:
        ...

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        ...


class SessionIdentityProvider:
    """In-process session holder: who is signed in, and with which token.

    Listeners are called with the new principal (or None) after every
    change, outside the internal lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._principal: Optional[str] = None
        self._token: Optional[str] = None
        self._listeners: list[Listener] = []

    def sign_in(self, principal: str, token: str):
        if not principal:
            raise ValueError("principal must be non-empty")
        with self._lock:
            self._principal = principal
            self._token = token
        logger.info(f"Signed in as {principal}")
        self._notify(principal)

    def sign_out(self):
        with self._lock:
            was = self._principal
            self._principal = None
            self._token = None
        if was is not None:
            logger.info(f"Signed out {was}")
            self._notify(None)

    def get_current_principal(self) -> Optional[str]:
        with self._lock:
            return self._principal

    def token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, principal: Optional[str]):
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(principal)


class IdentityGate:
    """Answers "who is signed in" and lets a sync wait for a sign-in."""

    def __init__(self, provider: IdentityProvider):
        self._provider = provider
        self._cond = threading.Condition()
        self._unsubscribe = provider.subscribe(self._on_change)

    def current_principal(self) -> Optional[str]:
        return self._provider.get_current_principal()

    def await_ready(self, timeout_s: float) -> bool:
        """Block until a principal is present; False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._provider.get_current_principal() is not None,
                timeout=max(timeout_s, 0),
            )

    def close(self):
        self._unsubscribe()

    def _on_change(self, principal: Optional[str]):
        with self._cond:
            self._cond.notify_all()
