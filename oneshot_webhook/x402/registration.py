# oneshot_webhook/x402/registration.py
"""
Single-flight registration of the webhook with the x402scan directory.

The webhook is (re)registered whenever its public URL, description or mime
type differs from what was last registered. The last registered values are
persisted so restarts do not re-register. A non-blocking lock acts as the
in-flight flag: a request that finds a registration already running skips
registration instead of starting a duplicate one.
"""
import json
import logging
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from oneshot_webhook.core.config import settings
from oneshot_webhook.services.x402scan import register_resource

logger = logging.getLogger(__name__)

# x402scan only probes resources with these verbs
REGISTRABLE_METHODS = {"GET", "POST"}


@dataclass(frozen=True)
class RegistrationState:
    """What was last registered with the directory."""
    registeredUrl: Optional[str] = None
    resourceDescription: Optional[str] = None
    mimeType: Optional[str] = None


class RegistrationStore:
    """
    Persists the RegistrationState as a JSON file.

    With no path the state only lives in memory.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = Path(path) if path else None
        self._state: Optional[RegistrationState] = None

    def load(self) -> RegistrationState:
        if self._state is not None:
            return self._state

        state = RegistrationState()
        if self._path is not None and self._path.exists():
            try:
                data = json.loads(self._path.read_text())
                state = RegistrationState(
                    registeredUrl=data.get("registeredUrl"),
                    resourceDescription=data.get("resourceDescription"),
                    mimeType=data.get("mimeType"),
                )
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Could not read registration state from {self._path}: {e}")

        self._state = state
        return state

    def save(self, state: RegistrationState) -> None:
        self._state = state
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(asdict(state)))
        except OSError as e:
            logger.error(f"Failed to persist registration state to {self._path}: {e}")


class RegistrationGuard:
    """Owns the registration state of one webhook endpoint."""

    def __init__(
        self,
        store: RegistrationStore,
        register: Callable[[str], None] = register_resource
    ):
        self._store = store
        self._register = register
        self._in_flight = threading.Lock()

    def needs_registration(self, url: str, description: str, mime_type: str) -> bool:
        state = self._store.load()
        return (
            state.registeredUrl != url
            or state.resourceDescription != description
            or state.mimeType != mime_type
        )

    def register_if_needed(self, url: str, description: str, mime_type: str) -> bool:
        """
        Register the webhook if it changed since the last registration.

        Returns:
            True if a registration was made by this call
        """
        if not self.needs_registration(url, description, mime_type):
            return False

        if not self._in_flight.acquire(blocking=False):
            logger.debug("x402scan registration already in progress, skipping")
            return False

        try:
            # Another caller may have finished registering while we checked
            if not self.needs_registration(url, description, mime_type):
                return False

            try:
                self._register(url)
            except Exception as e:
                # Registration is best effort; the next request retries
                logger.error(f"Error registering webhook on x402scan: {e}")
                return False

            self._store.save(RegistrationState(
                registeredUrl=url,
                resourceDescription=description,
                mimeType=mime_type,
            ))
        finally:
            self._in_flight.release()

        logger.info("Successfully registered webhook on x402scan")
        return True

    async def maybe_register(self, url: str, description: str, mime_type: str) -> bool:
        """Async wrapper running register_if_needed in the thread pool."""
        return await run_in_threadpool(self.register_if_needed, url, description, mime_type)


def should_register(http_methods) -> bool:
    """Check whether the webhook listens on a verb x402scan supports."""
    if not settings.X402SCAN_ENABLED:
        return False
    return any(method.upper() in REGISTRABLE_METHODS for method in http_methods)


# Global guard instance
_guard: Optional[RegistrationGuard] = None
_guard_lock = threading.Lock()


def get_registration_guard() -> RegistrationGuard:
    """
    Get the registration guard of this service's webhook endpoint.

    Returns:
        The singleton RegistrationGuard
    """
    global _guard

    if _guard is None:
        with _guard_lock:
            if _guard is None:
                _guard = RegistrationGuard(RegistrationStore(settings.X402_REGISTRATION_STATE_PATH))

    return _guard


def reset_registration_guard() -> None:
    """Drop the global guard (useful for testing)."""
    global _guard
    with _guard_lock:
        _guard = None
