from datetime import date
from typing import List

import pytest

from menoguide.core.account_service import SignupResult
from menoguide.core.signup_state import (
    CycleInfo,
    MenopausePhase,
    MenopauseSymptoms,
    PersonalConcerns,
    SignupDraft,
    UserPreferences,
)
from menoguide.session import InMemoryKeyValueStore, ProgressStore


HOUR_MS = 60 * 60 * 1000
START_MS = 1_760_000_000_000


class FakeClock:
    """Mutable epoch-milliseconds clock."""

    def __init__(self, now_ms: int = START_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance_hours(self, hours: float) -> None:
        self.now_ms += int(hours * HOUR_MS)


class FakeAccountService:
    """Records submitted drafts; fails with `error` when set."""

    def __init__(self, user_id: str = "user_123", error: Exception = None) -> None:
        self.user_id = user_id
        self.error = error
        self.calls: List[SignupDraft] = []

    async def complete_signup(self, draft: SignupDraft) -> SignupResult:
        self.calls.append(draft)
        if self.error is not None:
            raise self.error
        return SignupResult(user_id=self.user_id)


@pytest.fixture
def storage():
    return InMemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def progress_store(storage, clock):
    return ProgressStore(storage, clock=clock)


@pytest.fixture
def account_service():
    return FakeAccountService()


def make_valid_draft(phase: MenopausePhase = MenopausePhase.PERI_MENOPAUSE) -> SignupDraft:
    draft = SignupDraft(
        first_name="Maria",
        last_name="Silva",
        email="maria@example.com",
        password="Str0ng!Pass",
        menopause_phase=phase,
        symptoms=MenopauseSymptoms(hot_flashes=True),
        concerns=PersonalConcerns(sleep_quality=True),
        preferences=UserPreferences(notifications=True),
    )
    if phase == MenopausePhase.PRE_MENOPAUSE:
        draft.cycle_info = CycleInfo(
            average_cycle_length=28,
            period_duration=5,
            last_period_date=date(2026, 10, 1),
            is_regular=True,
        )
    return draft
