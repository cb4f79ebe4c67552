"""
Observable state containers for the profile and symptom data.

Each container is an explicit object: it is built with its storage and an
initial value, hydrates itself from storage once, and notifies subscribers
on every change. Nothing is kept at module level.
"""
import json
import logging
from dataclasses import dataclass, asdict, fields
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from ..session.key_value import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[], None]


@dataclass
class ProfileData:
    username: str
    avatar_url: str
    dietary_preferences: Optional[str] = None
    menopause_notes: Optional[str] = None


@dataclass
class SymptomData:
    mood: str = ""
    sleep_quality: str = ""
    hot_flashes: str = ""
    other_symptoms: Optional[str] = ""


DEFAULT_PROFILE = ProfileData(
    username="Jane",
    avatar_url="https://placehold.co/100x100.png",
    dietary_preferences="vegetarian",
    menopause_notes="",
)


def _from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


class ObservableStore(Generic[T]):
    """
    Holds one value of a dataclass type, persists it to a key-value surface
    and notifies listeners after each set().
    """

    def __init__(
        self,
        storage: KeyValueStore,
        key: str,
        value_type: Type[T],
        initial: T,
    ) -> None:
        self._storage = storage
        self._key = key
        self._value_type = value_type
        self._value: T = initial
        self._listeners: List[Listener] = []
        self._hydrate()

    def _hydrate(self) -> None:
        try:
            raw = self._storage.get(self._key)
            if raw:
                self._value = _from_dict(self._value_type, json.loads(raw))
                logger.debug(f"Store hydrated from storage: key={self._key}")
        except Exception as e:
            logger.error(
                f"Failed to hydrate store, keeping initial value: key={self._key}, "
                f"error={type(e).__name__}: {e}"
            )

    def _persist(self) -> None:
        try:
            self._storage.set(self._key, json.dumps(asdict(self._value), ensure_ascii=False))
        except Exception as e:
            logger.error(
                f"Failed to persist store: key={self._key}, "
                f"error={type(e).__name__}: {e}"
            )

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._persist()
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(
                    f"Store listener failed: key={self._key}, "
                    f"error={type(e).__name__}: {e}",
                    exc_info=True,
                )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Registers a listener and returns the function that removes it.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class ProfileStore(ObservableStore[ProfileData]):
    PROFILE_KEY = "profile"
    LEGACY_USERNAME_KEY = "username"

    def __init__(self, storage: KeyValueStore, initial: Optional[ProfileData] = None) -> None:
        super().__init__(
            storage,
            self.PROFILE_KEY,
            ProfileData,
            initial if initial is not None else _from_dict(ProfileData, asdict(DEFAULT_PROFILE)),
        )

    def _hydrate(self) -> None:
        super()._hydrate()
        try:
            if self._storage.get(self._key):
                return
            # older clients only stored the username
            legacy_username = self._storage.get(self.LEGACY_USERNAME_KEY)
            if legacy_username:
                self._value.username = legacy_username
                logger.info("Legacy username migrated into profile store")
        except Exception as e:
            logger.error(f"Failed to read legacy username: error={type(e).__name__}: {e}")

    def _persist(self) -> None:
        super()._persist()
        try:
            self._storage.set(self.LEGACY_USERNAME_KEY, self._value.username)
        except Exception as e:
            logger.error(f"Failed to mirror legacy username: error={type(e).__name__}: {e}")


class SymptomStore(ObservableStore[SymptomData]):
    SYMPTOMS_KEY = "symptoms"

    def __init__(self, storage: KeyValueStore, initial: Optional[SymptomData] = None) -> None:
        super().__init__(
            storage,
            self.SYMPTOMS_KEY,
            SymptomData,
            initial if initial is not None else SymptomData(),
        )
