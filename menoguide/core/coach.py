"""
Coaching flows over the hosted language model.

Each flow validates its input with a pydantic model, renders a short system
instruction and returns the model's answer: plain text for the conversational
flows, a pydantic model parsed from JSON mode output for the structured ones.
"""
import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional, Type, TypeVar
from pydantic import BaseModel, Field, ValidationError

from .models import Message, Role
from ..infra.openai_client import LanguageModelClient

logger = logging.getLogger(__name__)


LIFE_COACH_PROMPT = (
    "You are a life coach helping people cope with stress and emotional "
    "outbursts related to menopause. Never give direct advice. Answer with "
    "exactly one thoughtful, open-ended question that helps the user reflect "
    "and find their own way forward."
)

CHAT_WITH_HISTORY_PROMPT = (
    "You are an assistant specialized in menopause. Give an informed, "
    "personalized answer that takes the user's tracked symptoms and the "
    "previous conversation into account."
)

NUTRITION_EXPERT_PROMPT = (
    "You are a nutrition expert for people going through menopause. Give "
    "practical, food-based suggestions that respect the user's dietary "
    "preferences. Recommend seeing a professional for medical concerns."
)


class LifeCoachInput(BaseModel):
    user_statement: str = Field(min_length=1)
    chat_history: Optional[str] = None


class ChatWithHistoryInput(BaseModel):
    question: str = Field(min_length=1)
    symptoms: str = ""
    chat_history: str = ""


class NutritionExpertInput(BaseModel):
    question: str = Field(min_length=1)
    dietary_preferences: Optional[str] = None


JOURNAL_ANALYSIS_PROMPT = (
    "You are Maestro, an empathetic assistant helping women navigate "
    "menopause. From the user's journal entry extract the key emotions she "
    "expressed, the menopause-related challenges she mentioned and every "
    "food she said she ate. Answer only with a JSON object with the keys "
    '"emotions", "challenges" and "food_eaten", each a list of short strings.'
)

RECOMMENDATIONS_PROMPT = (
    "Based on the user's tracked menopause symptoms, recommend articles, "
    "exercises and meditations. Answer only with a JSON object with the keys "
    '"articles", "exercises" and "meditations", each a list of short strings.'
)

RECIPE_GENERATOR_PROMPT = (
    "You are a creative chef specializing in healthy, flavorful cuisine for "
    "people managing menopause symptoms. Create 2 or 3 simple recipes built "
    "on the key ingredients, in the requested cuisine style when one is "
    "given, easy for a home cook to follow. Answer only with a JSON object "
    'with the key "recipes": a list of objects with "title", "ingredients" '
    '(list of strings) and "instructions" (list of steps).'
)

WEATHER_ADVICE_PROMPT = (
    "You are a menopause wellness expert giving weather-based advice. "
    "Explain how the current weather affects common symptoms such as hot "
    "flashes, mood and sleep, and suggest clothing, activities or self-care "
    "that fit it. Be supportive. Keep the advice to 2 or 3 actionable sentences."
)

WEATHER_LANGUAGE_INSTRUCTIONS = {
    "en": "Provide advice in English.",
    "fr": "Réponds en français uniquement.",
    "both": 'Provide advice in both English and French, separated by "---".',
}

WEATHER_ADVICE_TEMPERATURE = 0.7


class JournalInput(BaseModel):
    journal: str = Field(min_length=1)


class JournalAnalysis(BaseModel):
    emotions: List[str] = []
    challenges: List[str] = []
    food_eaten: List[str] = []


class RecommendationsInput(BaseModel):
    """
    Same fields as the tracked symptom record.
    """
    mood: str = ""
    sleep_quality: str = ""
    hot_flashes: str = ""
    other_symptoms: Optional[str] = None


class Recommendations(BaseModel):
    articles: List[str] = []
    exercises: List[str] = []
    meditations: List[str] = []


class RecipeRequest(BaseModel):
    ingredients: List[str] = Field(min_length=1)
    cuisine: Optional[str] = None


class Recipe(BaseModel):
    title: str
    ingredients: List[str] = []
    instructions: List[str] = []


class RecipeSuggestions(BaseModel):
    recipes: List[Recipe] = []


class WeatherConditions(BaseModel):
    temp: float  # celsius
    humidity: float  # percent
    wind_speed: float  # km/h
    description: str
    location: str


class WeatherAdviceInput(BaseModel):
    weather: WeatherConditions
    symptoms: List[str] = []
    age: Optional[int] = Field(default=None, ge=1, le=120)
    language: Literal["en", "fr", "both"] = "en"


class WeatherAdvice(BaseModel):
    advice: str
    weather: WeatherConditions
    timestamp: datetime


class StructuredReplyError(ValueError):
    """
    The model reply could not be parsed into the expected structure.
    """


OutputT = TypeVar("OutputT", bound=BaseModel)


class CoachingService:
    def __init__(self, lm_client: LanguageModelClient, max_history_chars: int = 8000) -> None:
        self._lm_client = lm_client
        self._max_history_chars = max_history_chars

    def _trim_history(self, history: Optional[str]) -> str:
        history = (history or "").strip()
        if len(history) > self._max_history_chars:
            # the most recent part of the conversation matters most
            history = history[-self._max_history_chars:]
        return history

    def get_coaching_response(
        self,
        user_statement: str,
        chat_history: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        payload = LifeCoachInput(user_statement=user_statement, chat_history=chat_history)
        history = self._trim_history(payload.chat_history)

        content = f'User says: "{payload.user_statement.strip()}"'
        if history:
            content = f"Recent conversation:\n{history}\n\n{content}"

        logger.debug(f"Life coach flow: history_chars={len(history)}")
        return self._lm_client.generate_reply(
            system_prompt=LIFE_COACH_PROMPT,
            messages=[Message(role=Role.USER, content=content)],
            request_id=request_id,
        )

    def chat_with_history(
        self,
        question: str,
        symptoms: str = "",
        chat_history: str = "",
        request_id: Optional[str] = None,
    ) -> str:
        payload = ChatWithHistoryInput(question=question, symptoms=symptoms, chat_history=chat_history)
        history = self._trim_history(payload.chat_history)

        content = (
            f"Symptoms: {payload.symptoms.strip() or 'none tracked'}\n"
            f"Chat history: {history or 'none'}\n"
            f"Question: {payload.question.strip()}"
        )
        logger.debug(f"Chat with history flow: history_chars={len(history)}")
        return self._lm_client.generate_reply(
            system_prompt=CHAT_WITH_HISTORY_PROMPT,
            messages=[Message(role=Role.USER, content=content)],
            request_id=request_id,
        )

    def get_nutrition_advice(
        self,
        question: str,
        dietary_preferences: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        payload = NutritionExpertInput(question=question, dietary_preferences=dietary_preferences)

        content = payload.question.strip()
        if payload.dietary_preferences:
            content = f"Dietary preferences: {payload.dietary_preferences.strip()}\n{content}"

        return self._lm_client.generate_reply(
            system_prompt=NUTRITION_EXPERT_PROMPT,
            messages=[Message(role=Role.USER, content=content)],
            request_id=request_id,
        )

    def _structured(
        self,
        flow: str,
        system_prompt: str,
        content: str,
        output_type: Type[OutputT],
        request_id: Optional[str],
    ) -> OutputT:
        reply = self._lm_client.generate_reply(
            system_prompt=system_prompt,
            messages=[Message(role=Role.USER, content=content)],
            request_id=request_id,
            json_output=True,
        )
        try:
            return output_type.model_validate_json(reply)
        except ValidationError as e:
            logger.error(
                f"Unparseable {flow} reply: request_id={request_id or '-'}, "
                f"reply_length={len(reply)}, errors={e.error_count()}"
            )
            raise StructuredReplyError(f"{flow} reply does not match {output_type.__name__}") from e

    def analyze_journal(self, journal: str, request_id: Optional[str] = None) -> JournalAnalysis:
        """
        Extracts emotions, menopause challenges and foods eaten from a
        free-text journal entry.

        Raises:
            StructuredReplyError: the reply is not the expected JSON object
        """
        payload = JournalInput(journal=journal)
        return self._structured(
            "journal analysis",
            JOURNAL_ANALYSIS_PROMPT,
            f"Journal entry:\n{payload.journal.strip()}",
            JournalAnalysis,
            request_id,
        )

    def get_personalized_recommendations(
        self,
        mood: str = "",
        sleep_quality: str = "",
        hot_flashes: str = "",
        other_symptoms: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Recommendations:
        payload = RecommendationsInput(
            mood=mood,
            sleep_quality=sleep_quality,
            hot_flashes=hot_flashes,
            other_symptoms=other_symptoms,
        )
        content = (
            f"Mood: {payload.mood or 'not tracked'}\n"
            f"Sleep quality: {payload.sleep_quality or 'not tracked'}\n"
            f"Hot flashes: {payload.hot_flashes or 'not tracked'}\n"
            f"Other symptoms: {payload.other_symptoms or 'none'}"
        )
        return self._structured("recommendations", RECOMMENDATIONS_PROMPT, content, Recommendations, request_id)

    def generate_recipes(
        self,
        ingredients: List[str],
        cuisine: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> RecipeSuggestions:
        payload = RecipeRequest(ingredients=ingredients, cuisine=cuisine)
        content = f"Key ingredients: {', '.join(i.strip() for i in payload.ingredients)}"
        if payload.cuisine:
            content += f"\nCuisine style: {payload.cuisine.strip()}"
        return self._structured("recipe", RECIPE_GENERATOR_PROMPT, content, RecipeSuggestions, request_id)

    def get_weather_advice(
        self,
        weather: WeatherConditions,
        symptoms: Optional[List[str]] = None,
        age: Optional[int] = None,
        language: str = "en",
        request_id: Optional[str] = None,
    ) -> WeatherAdvice:
        """
        Short advice on how the current weather may affect the user's
        symptoms, in English, French or both.
        """
        payload = WeatherAdviceInput(weather=weather, symptoms=symptoms or [], age=age, language=language)
        w = payload.weather

        lines = [
            f"Location: {w.location}",
            f"Temperature: {w.temp:g}°C",
            f"Humidity: {w.humidity:g}%",
            f"Wind: {w.wind_speed:g} km/h",
            f"Conditions: {w.description}",
        ]
        if payload.symptoms:
            lines.append(f"User symptoms: {', '.join(payload.symptoms)}")
        if payload.age is not None:
            lines.append(f"User age: {payload.age}")

        advice = self._lm_client.generate_reply(
            system_prompt=f"{WEATHER_ADVICE_PROMPT} {WEATHER_LANGUAGE_INSTRUCTIONS[payload.language]}",
            messages=[Message(role=Role.USER, content="\n".join(lines))],
            request_id=request_id,
            temperature=WEATHER_ADVICE_TEMPERATURE,
        )
        return WeatherAdvice(advice=advice, weather=w, timestamp=datetime.now(timezone.utc))
