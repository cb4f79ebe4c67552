"""Unit tests for CoachingService and the language model client retries."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIStatusError, APITimeoutError, BadRequestError, RateLimitError
from pydantic import ValidationError

from menoguide.config import AppConfig
from menoguide.core.coach import (
    CHAT_WITH_HISTORY_PROMPT,
    JOURNAL_ANALYSIS_PROMPT,
    LIFE_COACH_PROMPT,
    NUTRITION_EXPERT_PROMPT,
    WEATHER_ADVICE_PROMPT,
    WEATHER_ADVICE_TEMPERATURE,
    WEATHER_LANGUAGE_INSTRUCTIONS,
    CoachingService,
    JournalAnalysis,
    Recommendations,
    StructuredReplyError,
    WeatherConditions,
)
from menoguide.core.models import Message, Role
from menoguide.infra.openai_client import LanguageModelClient, backoff_delay, is_transient_error


def _completion(text):
    message = SimpleNamespace(content=text)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _status_error(cls, status_code):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return cls("error", response=response, body=None)


@pytest.fixture
def config():
    return AppConfig(openai_api_key="sk-test", openai_max_retries=2)


@pytest.fixture
def openai_client():
    return MagicMock()


@pytest.fixture
def lm_client(config, openai_client):
    return LanguageModelClient(config, client=openai_client)


# ── Language model client ────────────────────────────────────────────────


class TestLanguageModelClient:

    def test_payload_starts_with_system_prompt(self, lm_client):
        payload = lm_client.build_payload("be kind", [Message(Role.USER, "hi")])

        assert payload == [
            {"role": "system", "content": "be kind"},
            {"role": "user", "content": "hi"},
        ]

    def test_returns_stripped_reply(self, lm_client, openai_client):
        openai_client.chat.completions.create.return_value = _completion("  hello \n")

        assert lm_client.generate_reply("sys", []) == "hello"

    def test_empty_reply_raises(self, lm_client, openai_client):
        openai_client.chat.completions.create.return_value = _completion("")

        with pytest.raises(ValueError, match="Empty reply"):
            lm_client.generate_reply("sys", [])

    @patch("menoguide.infra.openai_client.time.sleep")
    def test_retries_rate_limit_then_succeeds(self, sleep, lm_client, openai_client):
        openai_client.chat.completions.create.side_effect = [
            _status_error(RateLimitError, 429),
            _completion("ok"),
        ]

        assert lm_client.generate_reply("sys", []) == "ok"
        assert sleep.call_count == 1

    @patch("menoguide.infra.openai_client.time.sleep")
    def test_gives_up_after_max_retries(self, sleep, lm_client, openai_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_client.chat.completions.create.side_effect = APITimeoutError(request=request)

        with pytest.raises(APITimeoutError):
            lm_client.generate_reply("sys", [])

        assert openai_client.chat.completions.create.call_count == 3
        assert sleep.call_count == 2

    @patch("menoguide.infra.openai_client.time.sleep")
    def test_client_errors_are_not_retried(self, sleep, lm_client, openai_client):
        openai_client.chat.completions.create.side_effect = _status_error(BadRequestError, 400)

        with pytest.raises(BadRequestError):
            lm_client.generate_reply("sys", [])

        sleep.assert_not_called()

    def test_retry_delay_grows_exponentially(self):
        with patch("menoguide.infra.openai_client.random.uniform", return_value=0):
            assert backoff_delay(0, 400) == pytest.approx(0.4)
            assert backoff_delay(2, 400) == pytest.approx(1.6)

    def test_jitter_stays_within_twenty_percent(self):
        for attempt in range(4):
            delay = backoff_delay(attempt, 400)
            base = 0.4 * (2 ** attempt)
            assert base <= delay <= base * 1.2 + 1e-9

    @pytest.mark.parametrize(
        "status_code,expected", [(429, True), (500, True), (503, True), (400, False), (404, False)]
    )
    def test_transient_status_codes(self, status_code, expected):
        assert is_transient_error(_status_error(APIStatusError, status_code)) is expected

    def test_unrelated_errors_are_not_transient(self):
        assert is_transient_error(KeyError("x")) is False

    def test_json_output_requests_json_mode(self, lm_client, openai_client):
        openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        lm_client.generate_reply("answer in JSON", [], json_output=True, temperature=0.7)

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.7

    def test_plain_reply_sends_no_extra_options(self, lm_client, openai_client):
        openai_client.chat.completions.create.return_value = _completion("hi")

        lm_client.generate_reply("sys", [])

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert "response_format" not in kwargs
        assert "temperature" not in kwargs


# ── Coaching flows ───────────────────────────────────────────────────────


class TestCoachingService:

    @pytest.fixture
    def model(self):
        client = MagicMock()
        client.generate_reply.return_value = "What would help you feel calmer today?"
        return client

    def _sent(self, model):
        kwargs = model.generate_reply.call_args.kwargs
        return kwargs["system_prompt"], kwargs["messages"]

    def test_life_coach_answers_with_model_reply(self, model):
        service = CoachingService(model)

        reply = service.get_coaching_response("I snapped at my partner again")

        assert reply == "What would help you feel calmer today?"
        system_prompt, messages = self._sent(model)
        assert system_prompt == LIFE_COACH_PROMPT
        assert len(messages) == 1
        assert messages[0].role == Role.USER
        assert "I snapped at my partner again" in messages[0].content

    def test_life_coach_rejects_empty_statement(self, model):
        with pytest.raises(ValidationError):
            CoachingService(model).get_coaching_response("")

        model.generate_reply.assert_not_called()

    def test_chat_includes_symptoms_and_history(self, model):
        CoachingService(model).chat_with_history(
            "Is this normal?", symptoms="hot flashes", chat_history="user: hi"
        )

        system_prompt, messages = self._sent(model)
        assert system_prompt == CHAT_WITH_HISTORY_PROMPT
        assert "Symptoms: hot flashes" in messages[0].content
        assert "Chat history: user: hi" in messages[0].content
        assert "Question: Is this normal?" in messages[0].content

    def test_history_is_trimmed_to_most_recent(self, model):
        history = "old " * 100 + "recent"

        CoachingService(model, max_history_chars=10).chat_with_history("q", chat_history=history)

        _, messages = self._sent(model)
        assert "Chat history: old recent" in messages[0].content
        assert "old old" not in messages[0].content

    def test_nutrition_mentions_preferences(self, model):
        CoachingService(model).get_nutrition_advice(
            "What helps with bone health?", dietary_preferences="vegan"
        )

        system_prompt, messages = self._sent(model)
        assert system_prompt == NUTRITION_EXPERT_PROMPT
        assert messages[0].content.startswith("Dietary preferences: vegan")

    def test_request_id_is_forwarded(self, model):
        CoachingService(model).get_nutrition_advice("q", request_id="req-1")

        assert model.generate_reply.call_args.kwargs["request_id"] == "req-1"


# ── Structured flows ─────────────────────────────────────────────────────


WEATHER = WeatherConditions(temp=31.5, humidity=70, wind_speed=12, description="sunny", location="Lisbon")


class TestStructuredFlows:

    def _model(self, reply):
        client = MagicMock()
        client.generate_reply.return_value = reply
        return client

    def test_journal_analysis_is_parsed(self):
        model = self._model(
            '{"emotions": ["tired", "hopeful"], "challenges": ["hot flashes"], "food_eaten": ["oatmeal"]}'
        )

        analysis = CoachingService(model).analyze_journal("Woke up twice, oatmeal for breakfast")

        assert analysis == JournalAnalysis(
            emotions=["tired", "hopeful"], challenges=["hot flashes"], food_eaten=["oatmeal"]
        )
        kwargs = model.generate_reply.call_args.kwargs
        assert kwargs["json_output"] is True
        assert kwargs["system_prompt"] == JOURNAL_ANALYSIS_PROMPT
        assert "oatmeal for breakfast" in kwargs["messages"][0].content

    def test_missing_lists_default_to_empty(self):
        model = self._model('{"emotions": ["calm"]}')

        analysis = CoachingService(model).analyze_journal("A quiet day")

        assert analysis.challenges == []
        assert analysis.food_eaten == []

    @pytest.mark.parametrize("reply", ["not json", '{"emotions": "calm"}', "[1, 2]"])
    def test_unparseable_reply_raises(self, reply):
        with pytest.raises(StructuredReplyError, match="journal analysis"):
            CoachingService(self._model(reply)).analyze_journal("A quiet day")

    def test_recommendations_use_symptom_fields(self):
        model = self._model('{"articles": ["a"], "exercises": ["e"], "meditations": ["m"]}')

        result = CoachingService(model).get_personalized_recommendations(
            mood="low", sleep_quality="poor", hot_flashes="daily"
        )

        assert result == Recommendations(articles=["a"], exercises=["e"], meditations=["m"])
        content = model.generate_reply.call_args.kwargs["messages"][0].content
        assert "Mood: low" in content
        assert "Sleep quality: poor" in content
        assert "Hot flashes: daily" in content
        assert "Other symptoms: none" in content

    def test_recipes_are_parsed(self):
        model = self._model(
            '{"recipes": [{"title": "Tofu stir-fry", "ingredients": ["tofu", "broccoli"],'
            ' "instructions": ["Press tofu", "Stir-fry"]}]}'
        )

        result = CoachingService(model).generate_recipes(["tofu", "broccoli"], cuisine="Asian")

        assert result.recipes[0].title == "Tofu stir-fry"
        assert result.recipes[0].instructions == ["Press tofu", "Stir-fry"]
        content = model.generate_reply.call_args.kwargs["messages"][0].content
        assert content == "Key ingredients: tofu, broccoli\nCuisine style: Asian"

    def test_recipes_need_ingredients(self):
        model = self._model("{}")

        with pytest.raises(ValidationError):
            CoachingService(model).generate_recipes([])

        model.generate_reply.assert_not_called()

    def test_weather_advice_is_plain_text(self):
        model = self._model("Stay in the shade and drink water.")

        advice = CoachingService(model).get_weather_advice(WEATHER, symptoms=["hot flashes"], age=51)

        assert advice.advice == "Stay in the shade and drink water."
        assert advice.weather == WEATHER
        assert advice.timestamp.tzinfo is not None
        kwargs = model.generate_reply.call_args.kwargs
        assert kwargs["temperature"] == WEATHER_ADVICE_TEMPERATURE
        assert "json_output" not in kwargs
        content = kwargs["messages"][0].content
        assert "Temperature: 31.5°C" in content
        assert "Humidity: 70%" in content
        assert "Wind: 12 km/h" in content
        assert "User symptoms: hot flashes" in content
        assert "User age: 51" in content

    @pytest.mark.parametrize("language", ["en", "fr", "both"])
    def test_weather_advice_language(self, language):
        model = self._model("ok")

        CoachingService(model).get_weather_advice(WEATHER, language=language)

        system_prompt = model.generate_reply.call_args.kwargs["system_prompt"]
        assert system_prompt.startswith(WEATHER_ADVICE_PROMPT)
        assert system_prompt.endswith(WEATHER_LANGUAGE_INSTRUCTIONS[language])

    def test_weather_advice_rejects_unknown_language(self):
        with pytest.raises(ValidationError):
            CoachingService(self._model("ok")).get_weather_advice(WEATHER, language="de")
