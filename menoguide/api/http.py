import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date
from uuid import uuid4
from fastapi import FastAPI, HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Any, Dict, Iterator, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from ..config import AppConfig
from ..core.coach import (
    JournalAnalysis,
    JournalInput,
    RecipeRequest,
    RecipeSuggestions,
    Recommendations,
    RecommendationsInput,
    WeatherAdvice,
    WeatherAdviceInput,
)
from ..core.engine import MenoGuideEngine, UnknownSessionError
from ..core.signup_state import MenopausePhase
from ..core.signup_wizard import SignupWizard, WizardStateError
from ..core.state_store import ProfileData, SymptomData
from ..core.validators import evaluate_password_strength

logger = logging.getLogger(__name__)


class CycleInfoPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    average_cycle_length: Optional[int] = Field(default=None, ge=1, le=120)
    period_duration: Optional[int] = Field(default=None, ge=1, le=30)
    last_period_date: Optional[date] = None
    is_regular: Optional[bool] = None


class SymptomsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hot_flashes: bool = False
    night_sweats: bool = False
    mood_swings: bool = False
    fatigue: bool = False
    sleep_problems: bool = False
    brain_fog: bool = False
    weight_gain: bool = False
    vaginal_dryness: bool = False
    irregular_periods: bool = False
    heavy_bleeding: bool = False
    skipped_periods: bool = False
    shorter_cycles: bool = False
    bone_loss: bool = False
    heart_health: bool = False
    other_symptoms: List[str] = []


class ConcernsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sleep_quality: bool = False
    energy_levels: bool = False
    mental_health: bool = False
    relationships: bool = False
    career: bool = False
    physical_activity: bool = False
    nutrition: bool = False
    stress_management: bool = False
    other_concerns: List[str] = []


class PreferencesPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notifications: bool = False
    email_updates: bool = False
    community_access: bool = False
    data_sharing: bool = False


class SignupUpdateRequest(BaseModel):
    """
    Partial signup data. Only the fields present in the request are merged;
    nested groups replace the stored group whole.
    """
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    profile_image: Optional[str] = None
    menopause_phase: Optional[MenopausePhase] = None
    cycle_info: Optional[CycleInfoPayload] = None
    symptoms: Optional[SymptomsPayload] = None
    concerns: Optional[ConcernsPayload] = None
    preferences: Optional[PreferencesPayload] = None


class StepItem(BaseModel):
    id: int
    title: str
    description: str


class SignupSessionResponse(BaseModel):
    session_id: str
    status: str
    current_step: int
    visible_steps: List[int]
    steps: List[StepItem]
    progress_percentage: float
    error: Optional[str] = None
    warnings: List[str] = []
    user_id: Optional[str] = None
    draft: Dict[str, Any]


class PasswordStrengthRequest(BaseModel):
    password: str


class PasswordStrengthResponse(BaseModel):
    score: int
    feedback: List[str]
    is_strong: bool


class LifeCoachRequest(BaseModel):
    user_statement: str = Field(min_length=1)
    chat_history: Optional[str] = None


class ChatRequest(BaseModel):
    question: str = Field(min_length=1)
    symptoms: str = ""
    chat_history: str = ""


class NutritionRequest(BaseModel):
    question: str = Field(min_length=1)
    dietary_preferences: Optional[str] = None


class CoachResponse(BaseModel):
    reply: str


class ProfilePayload(BaseModel):
    username: str = Field(min_length=1)
    avatar_url: str
    dietary_preferences: Optional[str] = None
    menopause_notes: Optional[str] = None


class SymptomsEntryPayload(BaseModel):
    mood: str = ""
    sleep_quality: str = ""
    hot_flashes: str = ""
    other_symptoms: Optional[str] = ""


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Generates a unique request_id per request, exposes it in the
    X-Request-ID header and logs the request duration.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = uuid4().hex[:16]
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request processed: request_id={request_id}, "
            f"method={request.method}, path={request.url.path}, "
            f"status={response.status_code}, duration_ms={duration_ms:.2f}"
        )
        return response


def _session_response(session_id: str, wizard: SignupWizard) -> SignupSessionResponse:
    return SignupSessionResponse(session_id=session_id, **wizard.snapshot())


def create_app(
    config: Optional[AppConfig] = None,
    engine: Optional[MenoGuideEngine] = None,
) -> FastAPI:
    """
    Creates the FastAPI application and wires its dependencies
    (config + engine).
    """
    if config is None:
        config = AppConfig.load_from_env()
    if engine is None:
        engine = MenoGuideEngine(config=config)

    app = FastAPI(
        title="MenoGuide API",
        version="0.1.0",
        description="Signup wizard, wellness state and coaching endpoints.",
    )
    app.add_middleware(RequestIDMiddleware)

    def checkout_or_404(session_id: str) -> Tuple[SignupWizard, threading.Lock]:
        try:
            return engine.checkout(session_id)
        except UnknownSessionError:
            raise HTTPException(status_code=404, detail="Signup session not found")

    @contextmanager
    def locked_wizard(session_id: str) -> Iterator[SignupWizard]:
        # sync endpoints run in the threadpool; one request per session at a time
        wizard, lock = checkout_or_404(session_id)
        with lock:
            yield wizard

    def require_coaching():
        if engine.coaching is None:
            raise HTTPException(status_code=503, detail="Coaching is not available")
        return engine.coaching

    @app.get("/health")
    def health_check():
        """
        Health check for monitoring and Docker healthchecks.
        """
        return engine.health()

    @app.post("/signup/sessions", response_model=SignupSessionResponse, status_code=201)
    def create_signup_session() -> SignupSessionResponse:
        session_id, wizard = engine.create_signup_session()
        return _session_response(session_id, wizard)

    @app.get("/signup/sessions/{session_id}", response_model=SignupSessionResponse)
    def get_signup_session(session_id: str) -> SignupSessionResponse:
        with locked_wizard(session_id) as wizard:
            return _session_response(session_id, wizard)

    @app.patch("/signup/sessions/{session_id}", response_model=SignupSessionResponse)
    def update_signup_session(session_id: str, payload: SignupUpdateRequest) -> SignupSessionResponse:
        fields = payload.model_dump(exclude_unset=True)
        with locked_wizard(session_id) as wizard:
            try:
                wizard.update(**fields)
            except WizardStateError as e:
                raise HTTPException(status_code=409, detail=str(e))
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            logger.debug(f"Signup draft updated: session_id={session_id}, fields={sorted(fields)}")
            return _session_response(session_id, wizard)

    @app.post("/signup/sessions/{session_id}/next", response_model=SignupSessionResponse)
    def next_step(session_id: str) -> SignupSessionResponse:
        with locked_wizard(session_id) as wizard:
            wizard.next()
            return _session_response(session_id, wizard)

    @app.post("/signup/sessions/{session_id}/previous", response_model=SignupSessionResponse)
    def previous_step(session_id: str) -> SignupSessionResponse:
        with locked_wizard(session_id) as wizard:
            wizard.previous()
            return _session_response(session_id, wizard)

    @app.post("/signup/sessions/{session_id}/jump/{step_id}", response_model=SignupSessionResponse)
    def jump_to_step(session_id: str, step_id: int) -> SignupSessionResponse:
        with locked_wizard(session_id) as wizard:
            wizard.jump_to(step_id)
            return _session_response(session_id, wizard)

    @app.post("/signup/sessions/{session_id}/complete", response_model=SignupSessionResponse)
    async def complete_signup(session_id: str, request: Request) -> SignupSessionResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        wizard, lock = checkout_or_404(session_id)

        # acquired off the event loop, a sync request may be holding it
        await asyncio.to_thread(lock.acquire)
        try:
            start_time = time.time()
            try:
                user_id = await wizard.complete()
            except WizardStateError as e:
                raise HTTPException(status_code=409, detail=str(e))

            duration_ms = (time.time() - start_time) * 1000
            if user_id is None:
                logger.info(
                    f"Signup not completed: request_id={request_id}, session_id={session_id}, "
                    f"error={wizard.error}, duration_ms={duration_ms:.2f}"
                )
                raise HTTPException(status_code=409, detail=wizard.error or "Signup could not be completed")

            logger.info(
                f"Signup completed: request_id={request_id}, session_id={session_id}, "
                f"user_id={user_id}, duration_ms={duration_ms:.2f}"
            )
            response = _session_response(session_id, wizard)
            engine.release_wizard(session_id)
            return response
        finally:
            lock.release()

    @app.post("/signup/password-strength", response_model=PasswordStrengthResponse)
    def password_strength(payload: PasswordStrengthRequest) -> PasswordStrengthResponse:
        strength = evaluate_password_strength(payload.password)
        return PasswordStrengthResponse(
            score=strength.score,
            feedback=strength.feedback,
            is_strong=strength.is_strong,
        )

    @app.get("/users/{user_id}/profile", response_model=ProfilePayload)
    def get_profile(user_id: str) -> ProfilePayload:
        return ProfilePayload(**asdict(engine.profile_store(user_id).get()))

    @app.put("/users/{user_id}/profile", response_model=ProfilePayload)
    def put_profile(user_id: str, payload: ProfilePayload) -> ProfilePayload:
        store = engine.profile_store(user_id)
        store.set(ProfileData(**payload.model_dump()))
        return ProfilePayload(**asdict(store.get()))

    @app.get("/users/{user_id}/symptoms", response_model=SymptomsEntryPayload)
    def get_symptoms(user_id: str) -> SymptomsEntryPayload:
        return SymptomsEntryPayload(**asdict(engine.symptom_store(user_id).get()))

    @app.put("/users/{user_id}/symptoms", response_model=SymptomsEntryPayload)
    def put_symptoms(user_id: str, payload: SymptomsEntryPayload) -> SymptomsEntryPayload:
        store = engine.symptom_store(user_id)
        store.set(SymptomData(**payload.model_dump()))
        return SymptomsEntryPayload(**asdict(store.get()))

    def run_coaching(name: str, request: Request, call):
        """
        Runs a coaching flow and returns its result: reply text or a
        structured model. Any failure becomes a 500.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.time()
        try:
            result = call(request_id)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Coaching flow failed: flow={name}, request_id={request_id}, "
                f"duration_ms={duration_ms:.2f}, error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise HTTPException(
                status_code=500,
                detail="Internal error while generating a reply. Please try again later.",
            )
        duration_ms = (time.time() - start_time) * 1000
        reply_length = len(result) if isinstance(result, str) else len(result.model_dump_json())
        logger.info(
            f"Coaching reply generated: flow={name}, request_id={request_id}, "
            f"reply_length={reply_length}, duration_ms={duration_ms:.2f}"
        )
        return result

    @app.post("/coach/life", response_model=CoachResponse)
    def life_coach(payload: LifeCoachRequest, request: Request) -> CoachResponse:
        coaching = require_coaching()
        reply = run_coaching(
            "life_coach",
            request,
            lambda request_id: coaching.get_coaching_response(
                payload.user_statement, payload.chat_history, request_id=request_id
            ),
        )
        return CoachResponse(reply=reply)

    @app.post("/coach/chat", response_model=CoachResponse)
    def chat(payload: ChatRequest, request: Request) -> CoachResponse:
        coaching = require_coaching()
        reply = run_coaching(
            "chat_with_history",
            request,
            lambda request_id: coaching.chat_with_history(
                payload.question, payload.symptoms, payload.chat_history, request_id=request_id
            ),
        )
        return CoachResponse(reply=reply)

    @app.post("/coach/nutrition", response_model=CoachResponse)
    def nutrition(payload: NutritionRequest, request: Request) -> CoachResponse:
        coaching = require_coaching()
        reply = run_coaching(
            "nutrition_expert",
            request,
            lambda request_id: coaching.get_nutrition_advice(
                payload.question, payload.dietary_preferences, request_id=request_id
            ),
        )
        return CoachResponse(reply=reply)

    @app.post("/coach/journal", response_model=JournalAnalysis)
    def journal_analysis(payload: JournalInput, request: Request) -> JournalAnalysis:
        coaching = require_coaching()
        return run_coaching(
            "journal_analysis",
            request,
            lambda request_id: coaching.analyze_journal(payload.journal, request_id=request_id),
        )

    @app.post("/coach/recommendations", response_model=Recommendations)
    def recommendations(payload: RecommendationsInput, request: Request) -> Recommendations:
        coaching = require_coaching()
        return run_coaching(
            "recommendations",
            request,
            lambda request_id: coaching.get_personalized_recommendations(
                **payload.model_dump(), request_id=request_id
            ),
        )

    @app.post("/users/{user_id}/recommendations", response_model=Recommendations)
    def user_recommendations(user_id: str, request: Request) -> Recommendations:
        coaching = require_coaching()
        tracked = engine.symptom_store(user_id).get()
        return run_coaching(
            "recommendations",
            request,
            lambda request_id: coaching.get_personalized_recommendations(
                tracked.mood,
                tracked.sleep_quality,
                tracked.hot_flashes,
                tracked.other_symptoms,
                request_id=request_id,
            ),
        )

    @app.post("/coach/recipes", response_model=RecipeSuggestions)
    def recipes(payload: RecipeRequest, request: Request) -> RecipeSuggestions:
        coaching = require_coaching()
        return run_coaching(
            "recipe_generator",
            request,
            lambda request_id: coaching.generate_recipes(
                payload.ingredients, payload.cuisine, request_id=request_id
            ),
        )

    @app.post("/coach/weather-advice", response_model=WeatherAdvice)
    def weather_advice(payload: WeatherAdviceInput, request: Request) -> WeatherAdvice:
        coaching = require_coaching()
        return run_coaching(
            "weather_advice",
            request,
            lambda request_id: coaching.get_weather_advice(
                payload.weather,
                symptoms=payload.symptoms,
                age=payload.age,
                language=payload.language,
                request_id=request_id,
            ),
        )

    return app
