"""Browser sessions and the progress group id each session subscribes under."""
import logging
import threading
import uuid
from typing import MutableMapping

from cachetools import TTLCache

from app.config import SESSION_IDLE_SECONDS, SESSION_MAX_ENTRIES

logger = logging.getLogger("converter.session")

GROUP_ID_KEY = "progress_group_id"


def get_or_create_group_id(session: MutableMapping[str, str]) -> str:
    """Return the session's group id, issuing and storing a new UUID if it has none."""
    group_id = session.get(GROUP_ID_KEY)
    if not group_id:
        group_id = str(uuid.uuid4())
        session[GROUP_ID_KEY] = group_id
        logger.info("Generated progress group ID: %s", group_id)
    return group_id


class SessionStore:
    """In-memory session state keyed by the browser's session token.

    Entries expire after ``idle_timeout`` seconds without access; every lookup
    re-inserts the entry so the TTL behaves as an idle window.
    """

    def __init__(self, idle_timeout: float = SESSION_IDLE_SECONDS, maxsize: int = SESSION_MAX_ENTRIES, timer=None):
        kwargs = {"timer": timer} if timer is not None else {}
        self._cache: TTLCache = TTLCache(maxsize=max(1, maxsize), ttl=max(1, idle_timeout), **kwargs)
        self._lock = threading.Lock()

    def get(self, token: str) -> dict[str, str]:
        with self._lock:
            data = self._cache.get(token)
            if data is None:
                data = {}
            # re-setting refreshes the expiry
            self._cache[token] = data
            return data

    def group_id_for(self, token: str) -> str:
        session = self.get(token)
        with self._lock:
            return get_or_create_group_id(session)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
