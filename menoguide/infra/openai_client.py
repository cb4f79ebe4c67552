import logging
import random
import time
from typing import Any, Dict, List, Optional
from openai import OpenAI, APITimeoutError, APIError, APIStatusError
from ..core.models import Message, Role
from ..config import AppConfig

logger = logging.getLogger(__name__)

# rate limiting plus every 5xx
RETRYABLE_STATUS_CODES = frozenset([429]) | frozenset(range(500, 600))


def is_transient_error(error: Exception) -> bool:
    """
    True for failures worth another attempt: timeouts, connection errors,
    rate limits and server errors. Other 4xx answers are final.
    """
    if isinstance(error, (APITimeoutError, TimeoutError)):
        return True
    if isinstance(error, APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES
    # APIConnectionError and friends carry no status code
    return isinstance(error, APIError)


def backoff_delay(attempt: int, base_delay_ms: int) -> float:
    """
    Seconds to wait before retry number `attempt` (0-based):
    base * 2^attempt with up to 20% jitter on top.
    """
    delay = (base_delay_ms / 1000.0) * (2 ** attempt)
    return delay + random.uniform(0, delay * 0.2)


class LanguageModelClient:
    """
    Thin wrapper over OpenAI chat completions used by the coaching flows.
    """

    def __init__(self, config: AppConfig, client: Optional[OpenAI] = None) -> None:
        self._model = config.openai_model
        self._max_retries = config.openai_max_retries
        self._retry_base_delay_ms = config.openai_retry_base_delay_ms
        self._client = client or OpenAI(
            api_key=config.openai_api_key,
            timeout=config.openai_timeout_ms / 1000.0,
        )

    @staticmethod
    def build_payload(system_prompt: str, messages: List[Message]) -> List[Dict[str, str]]:
        payload = [{"role": Role.SYSTEM.value, "content": system_prompt}]
        payload.extend({"role": m.role.value, "content": m.content} for m in messages)
        return payload

    def _request(
        self,
        payload: List[Dict[str, str]],
        temperature: Optional[float],
        json_output: bool,
    ) -> str:
        options: Dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if json_output:
            options["response_format"] = {"type": "json_object"}
        response = self._client.chat.completions.create(
            model=self._model,
            messages=payload,
            **options,
        )
        return (response.choices[0].message.content or "").strip()

    def generate_reply(
        self,
        system_prompt: str,
        messages: List[Message],
        request_id: Optional[str] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
    ) -> str:
        """
        Sends the flow instruction plus the conversation and returns the
        reply text. With json_output the model is put in JSON mode; the
        system prompt must then ask for JSON.

        Raises:
            ValueError: the model answered with an empty reply
            APIError: the last attempt failed, or the failure was not transient
        """
        payload = self.build_payload(system_prompt, messages)
        log_ctx = f"request_id={request_id or '-'}, model={self._model}"
        attempts = self._max_retries + 1
        logger.debug(f"Language model request: {log_ctx}, num_messages={len(payload)}")

        for attempt in range(attempts):
            started = time.time()
            try:
                reply = self._request(payload, temperature, json_output)
            except Exception as e:
                if attempt + 1 >= attempts or not is_transient_error(e):
                    logger.error(
                        f"Language model request failed: {log_ctx}, attempt={attempt + 1}/{attempts}, "
                        f"error={type(e).__name__}: {e}",
                        exc_info=True,
                    )
                    raise
                delay = backoff_delay(attempt, self._retry_base_delay_ms)
                logger.warning(
                    f"Transient language model error: {log_ctx}, attempt={attempt + 1}/{attempts}, "
                    f"error={type(e).__name__}, retry_in={delay:.2f}s"
                )
                time.sleep(delay)
                continue

            if not reply:
                logger.error(f"Empty reply from language model: {log_ctx}")
                raise ValueError("Empty reply received from the language model")

            logger.info(
                f"Language model reply: {log_ctx}, retries={attempt}, "
                f"duration_ms={(time.time() - started) * 1000:.2f}"
            )
            return reply
