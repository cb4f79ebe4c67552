"""
Persistence of the in-progress signup draft.

The draft is stored as JSON in an envelope {"data": ..., "timestamp": ...}
with the capture time in epoch milliseconds. Persistence is best-effort:
no method of ProgressStore raises.
"""
import json
import logging
import time
from typing import Callable, Optional

from ..core.signup_state import SignupDraft
from .key_value import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_KEY = "signupProgress"
DEFAULT_MAX_AGE_HOURS = 24


def now_ms() -> int:
    return int(time.time() * 1000)


class ProgressStore:
    """
    Saves, loads and clears the signup draft under a fixed key.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        key: str = DEFAULT_PROGRESS_KEY,
        max_age_hours: int = DEFAULT_MAX_AGE_HOURS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Args:
            storage: key-value surface holding the envelope
            key: storage key of the envelope
            max_age_hours: freshness window, older envelopes count as absent
            clock: returns the current time in epoch milliseconds
        """
        self._storage = storage
        self._key = key
        self._max_age_ms = max_age_hours * 60 * 60 * 1000
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    def save_progress(self, draft: SignupDraft) -> None:
        try:
            envelope = {"data": draft.to_dict(), "timestamp": self._clock()}
            self._storage.set(self._key, json.dumps(envelope, ensure_ascii=False))
            logger.debug(f"Signup progress saved: key={self._key}")
        except Exception as e:
            logger.error(
                f"Failed to save signup progress: key={self._key}, "
                f"error={type(e).__name__}: {e}"
            )

    def load_progress(self) -> Optional[SignupDraft]:
        try:
            raw = self._storage.get(self._key)
            if not raw:
                return None

            envelope = json.loads(raw)
            age_ms = self._clock() - int(envelope["timestamp"])
            if age_ms >= self._max_age_ms:
                logger.info(
                    f"Signup progress expired: key={self._key}, age_ms={age_ms}"
                )
                return None

            draft = SignupDraft.from_dict(envelope["data"])
            logger.debug(f"Signup progress loaded: key={self._key}")
            return draft
        except Exception as e:
            logger.error(
                f"Failed to load signup progress: key={self._key}, "
                f"error={type(e).__name__}: {e}"
            )
            return None

    def clear_progress(self) -> None:
        try:
            self._storage.remove(self._key)
            logger.debug(f"Signup progress cleared: key={self._key}")
        except Exception as e:
            logger.error(
                f"Failed to clear signup progress: key={self._key}, "
                f"error={type(e).__name__}: {e}"
            )
