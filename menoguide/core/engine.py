import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from uuid import uuid4
from sqlalchemy import text
from .account_service import AccountService
from .coach import CoachingService
from .signup_state import SignupDraft
from .signup_wizard import SignupWizard
from .state_store import ProfileStore, SymptomStore
from ..config import AppConfig
from ..infra.openai_client import LanguageModelClient
from ..session import (
    InMemoryKeyValueStore,
    KeyValueStore,
    NamespacedKeyValueStore,
    ProgressStore,
    RedisKeyValueStore,
)
from ..session.progress_store import now_ms
from ..storage.database import create_session_factory

logger = logging.getLogger(__name__)


class UnknownSessionError(KeyError):
    """
    No live wizard and no saved progress for the signup session.
    """


@dataclass
class _LiveWizard:
    wizard: SignupWizard
    lock: threading.Lock
    last_used_ms: int


class MenoGuideEngine:
    """
    Application core.

    - Chooses the key-value surface (Redis when configured, memory otherwise)
    - Owns the database session factory and the account service
    - Keeps a bounded set of live SignupWizards, one per signup session,
      each with its own lock
    - Builds the profile/symptom stores and the coaching service
    """

    def __init__(
        self,
        config: AppConfig,
        storage: Optional[KeyValueStore] = None,
        coaching: Optional[CoachingService] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Args:
            config: application settings
            storage: key-value surface for client state, chosen from config when None
            coaching: coaching service, built from config when None
            clock: current time in epoch milliseconds, shared with the progress stores
        """
        self._config = config
        self._clock = clock
        self._redis_store: Optional[RedisKeyValueStore] = None

        if storage is not None:
            self._storage = storage
        elif config.redis_url and config.redis_url.strip():
            try:
                self._redis_store = RedisKeyValueStore(
                    redis_url=config.redis_url,
                    ttl_seconds=config.signup_progress_max_age_hours * 3600,
                )
                self._storage = self._redis_store
                logger.info("Client state stored in Redis")
            except Exception as e:
                logger.error(f"Failed to initialize Redis store: {e}, falling back to memory")
                self._storage = InMemoryKeyValueStore()
        else:
            self._storage = InMemoryKeyValueStore()
            logger.info("Client state stored in memory (REDIS_URL not set)")

        # tables are created automatically only in dev, production uses Alembic
        create_tables = config.env == "dev"
        self._db_session_factory = create_session_factory(config.database_url, create_tables=create_tables)
        self._account_service = AccountService(self._db_session_factory)

        if coaching is None and config.coaching_available:
            coaching = CoachingService(
                LanguageModelClient(config),
                max_history_chars=config.max_chat_history_chars,
            )
        self._coaching = coaching

        # least recently used first
        self._wizards: "OrderedDict[str, _LiveWizard]" = OrderedDict()
        self._wizards_lock = threading.Lock()
        self._max_live_wizards = config.max_live_signup_sessions
        self._wizard_idle_ms = config.signup_progress_max_age_hours * 60 * 60 * 1000

        db_type = "sqlite" if "sqlite" in config.database_url else "postgres" if "postgres" in config.database_url else "unknown"
        logger.info(
            f"MenoGuideEngine initialized: database_type={db_type}, "
            f"coaching={'on' if self._coaching else 'off'}"
        )

    @property
    def account_service(self) -> AccountService:
        return self._account_service

    @property
    def coaching(self) -> Optional[CoachingService]:
        return self._coaching

    def _progress_store(self, session_id: str) -> ProgressStore:
        return ProgressStore(
            self._storage,
            key=f"{self._config.signup_progress_key}:{session_id}",
            max_age_hours=self._config.signup_progress_max_age_hours,
            clock=self._clock,
        )

    @property
    def live_wizard_count(self) -> int:
        return len(self._wizards)

    def _register(self, session_id: str, wizard: SignupWizard) -> _LiveWizard:
        # caller holds _wizards_lock
        entry = _LiveWizard(wizard=wizard, lock=threading.Lock(), last_used_ms=self._clock())
        self._wizards[session_id] = entry
        while len(self._wizards) > self._max_live_wizards:
            evicted_id, _ = self._wizards.popitem(last=False)
            logger.info(f"Live wizard evicted (limit reached): session_id={evicted_id}")
        return entry

    def evict_expired(self) -> int:
        """
        Drops live wizards idle for longer than the progress freshness
        window. Returns how many were dropped.
        """
        cutoff = self._clock() - self._wizard_idle_ms
        with self._wizards_lock:
            expired = [sid for sid, entry in self._wizards.items() if entry.last_used_ms <= cutoff]
            for session_id in expired:
                del self._wizards[session_id]
        if expired:
            logger.info(f"Expired live wizards evicted: count={len(expired)}")
        return len(expired)

    def create_signup_session(self) -> Tuple[str, SignupWizard]:
        self.evict_expired()

        session_id = uuid4().hex
        progress_store = self._progress_store(session_id)
        wizard = SignupWizard(progress_store, self._account_service)
        # an empty draft marks the session as known, so it can be resumed before the first edit
        progress_store.save_progress(SignupDraft())
        with self._wizards_lock:
            self._register(session_id, wizard)
        logger.info(f"Signup session created: session_id={session_id}")
        return session_id, wizard

    def checkout(self, session_id: str) -> Tuple[SignupWizard, threading.Lock]:
        """
        Returns the wizard of a session together with the lock that
        serializes requests on it.

        A live wizard whose saved progress has expired or been cleared is
        dropped. Without a live wizard the session is rebuilt from saved
        progress (e.g. after a restart or an eviction).

        Raises:
            UnknownSessionError: nothing is known about the session
        """
        progress_store = self._progress_store(session_id)
        has_progress = progress_store.load_progress() is not None

        with self._wizards_lock:
            entry = self._wizards.get(session_id)
            if entry is not None and not has_progress:
                del self._wizards[session_id]
                logger.info(f"Live wizard dropped, progress expired: session_id={session_id}")
                entry = None

            if entry is None:
                if not has_progress:
                    raise UnknownSessionError(session_id)
                entry = self._register(session_id, SignupWizard(progress_store, self._account_service))
                logger.debug(f"Signup wizard rebuilt from progress: session_id={session_id}")

            entry.last_used_ms = self._clock()
            self._wizards.move_to_end(session_id)
            return entry.wizard, entry.lock

    def get_wizard(self, session_id: str) -> SignupWizard:
        return self.checkout(session_id)[0]

    def release_wizard(self, session_id: str) -> None:
        with self._wizards_lock:
            self._wizards.pop(session_id, None)

    def profile_store(self, user_id: str) -> ProfileStore:
        initial = self._account_service.get_user_profile(user_id)
        return ProfileStore(NamespacedKeyValueStore(self._storage, f"user:{user_id}:"), initial=initial)

    def symptom_store(self, user_id: str) -> SymptomStore:
        return SymptomStore(NamespacedKeyValueStore(self._storage, f"user:{user_id}:"))

    def health(self) -> Dict[str, str]:
        redis_status = "disabled"
        if self._redis_store is not None:
            redis_status = "ok" if self._redis_store.ping() else "error"

        db_status = "ok"
        db_session = self._db_session_factory()
        try:
            db_session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            db_status = "error"
        finally:
            db_session.close()

        status = "healthy" if db_status == "ok" and redis_status != "error" else "degraded"
        return {"status": status, "database": db_status, "redis": redis_status}
