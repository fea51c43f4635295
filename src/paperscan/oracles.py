"""
Model provider clients used as extraction, validation and analysis oracles.

Provides:
- PaperOracle protocol consumed by the pipeline
- ChatCompletionsClient for OpenAI-compatible endpoints (OpenAI, Bailian/DashScope)
- GeminiClient for Google's generateContent endpoint
- create_oracle() resolving a provider config to its client once

HTTP calls use requests and run in a worker thread so the event loop stays free.
"""

import asyncio
import base64
import logging
from typing import Optional, Dict, Any, Protocol

import requests

from .config import ProviderConfig, ProviderKind, OpenAIConfig, BailianConfig, GeminiConfig
from .errors import TransportError, MalformedResponse
from .items import PageAnalysisResult, ValidationResult, QuestionAnalysis
from .repair import JsonRepairer
from . import prompts

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.2
VALIDATION_TEMPERATURE = 0.1


class PaperOracle(Protocol):
    """The three suspending model calls the pipeline depends on."""

    async def analyze_page(
        self, image_bytes: bytes, page_number: int = 1, prompt_suffix: Optional[str] = None
    ) -> PageAnalysisResult:
        ...

    async def validate_page(self, image_bytes: bytes, items_summary: str) -> ValidationResult:
        ...

    async def analyze_question(self, question: str, subject: str, grade: str) -> QuestionAnalysis:
        ...


# ============================================================================
# Base Client
# ============================================================================

class OracleClient:
    """
    Shared request / response handling for provider clients.

    Subclasses implement _complete(), a blocking call returning the model's text.
    """

    def __init__(
        self,
        config: ProviderConfig,
        repairer: Optional[JsonRepairer] = None,
        default_validation_score: int = 80,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.repairer = repairer or JsonRepairer()
        self.default_validation_score = default_validation_score
        self.session = session or requests.Session()

    def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        image_bytes: Optional[bytes],
        model: str,
        temperature: float,
    ) -> str:
        raise NotImplementedError

    def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
              params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST JSON and return the decoded body, mapping every failure to TransportError."""
        try:
            response = self.session.post(
                url,
                json=payload,
                headers=headers,
                params=params,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{self.config.display_name} request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{self.config.display_name} request failed",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            raise TransportError(f"{self.config.display_name} returned an empty body",
                                 status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{self.config.display_name} returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def _ask(self, system_prompt: str, user_prompt: str, image_bytes: Optional[bytes],
                   model: str, temperature: float, api: str) -> str:
        """
        Run one blocking completion on a worker thread.

        Cancelling the caller does not stop the worker thread: the in-flight
        request ends on its own within the provider timeout and its answer is
        discarded. The session is closed to drop its pooled connections.
        """
        try:
            text = await asyncio.to_thread(
                self._complete, system_prompt, user_prompt, image_bytes, model, temperature
            )
        except asyncio.CancelledError:
            logger.warning(f"[{api}] cancelled; abandoning the in-flight request "
                           f"(bounded by the {self.config.timeout}s timeout)")
            self.session.close()
            raise
        logger.debug(f"[{api}] raw model response ({len(text)} chars):\n{text}")
        return text

    async def analyze_page(
        self, image_bytes: bytes, page_number: int = 1, prompt_suffix: Optional[str] = None
    ) -> PageAnalysisResult:
        """
        Ask the vision model to extract the structured items of one photograph.

        Raises:
            TransportError: On network or service failure
            MalformedResponse: If the answer is not a JSON object even after repair
        """
        text = await self._ask(
            prompts.PAGE_ANALYSIS_SYSTEM_PROMPT,
            prompts.page_analysis_user_prompt(page_number, prompt_suffix or ""),
            image_bytes,
            self.config.vl_model,
            ANALYSIS_TEMPERATURE,
            "analyze_page",
        )
        return PageAnalysisResult.from_dict(self.repairer.parse_object(text))

    async def validate_page(self, image_bytes: bytes, items_summary: str) -> ValidationResult:
        """Ask the vision model to score an extraction; unparseable answers get a neutral score."""
        text = await self._ask(
            prompts.VALIDATION_SYSTEM_PROMPT,
            prompts.validation_message(items_summary),
            image_bytes,
            self.config.vl_model,
            VALIDATION_TEMPERATURE,
            "validate_page",
        )
        try:
            return ValidationResult.from_dict(self.repairer.parse_object(text))
        except MalformedResponse:
            logger.warning(f"Unparseable validation response, using score {self.default_validation_score}")
            return ValidationResult(valid=True, score=self.default_validation_score)

    async def analyze_question(self, question: str, subject: str, grade: str) -> QuestionAnalysis:
        """Generate the answer and explanation of one question with the text model."""
        text = await self._ask(
            "",
            prompts.question_analysis_prompt(question, subject, grade),
            None,
            self.config.model,
            ANALYSIS_TEMPERATURE,
            "analyze_question",
        )
        return QuestionAnalysis.from_dict(self.repairer.parse_object(text))


def _image_b64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode('utf-8')


# ============================================================================
# Provider Clients
# ============================================================================

class ChatCompletionsClient(OracleClient):
    """OpenAI-compatible chat/completions client (OpenAI, DashScope compatible mode)."""

    def _complete(self, system_prompt, user_prompt, image_bytes, model, temperature) -> str:
        if image_bytes is not None:
            user_content = [
                {"type": "image_url",
                 "image_url": {"url": f"data:image/jpeg;base64,{_image_b64(image_bytes)}"}},
                {"type": "text", "text": user_prompt},
            ]
        else:
            user_content = user_prompt

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_content})

        data = self._post(
            f"{self.config.base_url.rstrip('/')}/chat/completions",
            {"model": model, "messages": messages, "temperature": temperature},
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise TransportError(f"{self.config.display_name} response has no message content",
                                 body=str(data))
        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not content:
            raise TransportError(f"{self.config.display_name} returned an empty message")
        return content


class GeminiClient(OracleClient):
    """Google Gemini generateContent client; prompt and image share one user turn."""

    def _complete(self, system_prompt, user_prompt, image_bytes, model, temperature) -> str:
        text = f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt
        parts = [{"text": text}]
        if image_bytes is not None:
            parts.append({"inline_data": {"mime_type": "image/jpeg", "data": _image_b64(image_bytes)}})

        data = self._post(
            f"{self.config.base_url.rstrip('/')}/models/{model}:generateContent",
            {
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"temperature": temperature},
            },
            params={"key": self.config.api_key},
        )

        try:
            response_parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise TransportError("Gemini response has no candidates", body=str(data))
        content = "".join(part.get("text", "") for part in response_parts if isinstance(part, dict))
        if not content:
            raise TransportError("Gemini returned an empty message")
        return content


CLIENT_TYPES = {
    ProviderKind.BAILIAN: ChatCompletionsClient,
    ProviderKind.OPENAI: ChatCompletionsClient,
    ProviderKind.GEMINI: GeminiClient,
}


def create_oracle(config: ProviderConfig, default_validation_score: int = 80) -> OracleClient:
    """
    Resolve a provider config to its client.

    Args:
        config: One of BailianConfig, OpenAIConfig, GeminiConfig
        default_validation_score: Score used when validation answers are unparseable

    Returns:
        The provider's oracle client

    Raises:
        ValueError: If the config has no API key
    """
    if not isinstance(config, (BailianConfig, OpenAIConfig, GeminiConfig)):
        raise TypeError(f"Unsupported provider config: {type(config).__name__}")
    if not config.api_key:
        raise ValueError(f"No API key configured for {config.display_name}")

    client_type = CLIENT_TYPES[config.kind]
    logger.info(f"Using {config.display_name} (vision model {config.vl_model}, text model {config.model})")
    return client_type(config, default_validation_score=default_validation_score)
