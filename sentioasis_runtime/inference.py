"""
Synchronous sentiment inference over the Hugging Face Inference API.

This is the downstream analysis path: it does not depend on the wallet,
contract or liveness sessions. Clients are constructed explicitly and
passed to whatever needs them, so tests can hand in a client pointed at
a mocked transport.

Usage::

    client = InferenceClient(api_key="hf_...")
    service = SentimentAnalysisService(client)
    result = await service.analyze_with_agent(agent, "great product", request_id=7)
    await client.close()
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote as url_quote, urlparse

import httpx

from sentioasis_runtime.types import (
    Agent,
    ModelInfo,
    ModelValidationResult,
    SentimentDistribution,
    SentimentPrediction,
    SentimentResult,
    SentimentStatistics,
    TransformerAnalysisResult,
    TransformerModel,
)
from sentioasis_runtime.validation import MAX_TEXT_LENGTH

logger = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"
HF_HUB_URL = "https://huggingface.co/api/models"

DEFAULT_MODELS: list[TransformerModel] = [
    TransformerModel(
        id="simple-sentiment",
        name="Simple Sentiment (Free)",
        model_id="distilbert-base-uncased-finetuned-sst-2-english",
        description="Basic sentiment analysis, no authentication required",
        labels=["negative", "positive"],
    ),
    TransformerModel(
        id="general-sentiment",
        name="General Sentiment Analysis",
        model_id="cardiffnlp/twitter-roberta-base-sentiment-latest",
        description="General purpose sentiment analysis trained on Twitter data",
        labels=["negative", "neutral", "positive"],
    ),
    TransformerModel(
        id="financial-sentiment",
        name="Financial News Sentiment",
        model_id="mrm8488/distilroberta-finetuned-financial-news-sentiment-analysis",
        description="Optimized for financial news and market sentiment",
        labels=["negative", "neutral", "positive"],
    ),
    TransformerModel(
        id="emotion-analysis",
        name="Emotion Detection",
        model_id="j-hartmann/emotion-english-distilroberta-base",
        description="Detects emotions: joy, optimism, anger, sadness",
        labels=["anger", "fear", "joy", "love", "optimism", "pessimism", "sadness", "surprise", "trust"],
    ),
    TransformerModel(
        id="review-sentiment",
        name="Product Review Sentiment",
        model_id="nlptown/bert-base-multilingual-uncased-sentiment",
        description="Specialized for product reviews and ratings",
        labels=["1 star", "2 stars", "3 stars", "4 stars", "5 stars"],
    ),
]

_POSITIVE_LABELS = {"joy", "love", "optimism"}
_NEGATIVE_LABELS = {"anger", "sadness", "pessimism"}

_STATUS_MESSAGES = {
    401: "Unauthorized: Hugging Face API key required.",
    429: "Rate limit exceeded. Please wait a moment before trying again or add a Hugging Face API key for higher limits.",
    503: "Model is currently loading. Please wait a few seconds and try again.",
}


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class InferenceError(RuntimeError):
    """The inference backend rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class _HttpClient:
    """Thin wrapper around httpx for inference and hub requests."""

    def __init__(self, api_key: str | None, timeout: float, max_retries: int = 0) -> None:
        self.api_key = api_key
        self._max_retries = max_retries
        self._client = httpx.AsyncClient(timeout=timeout)

    async def request(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None = None,
        authenticated: bool = True,
        _attempt: int = 0,
    ) -> Any:
        """Make a request and return the decoded JSON body.

        Retries on 429 with exponential backoff when ``max_retries`` > 0.
        """
        headers = {"Accept": "application/json"}
        if authenticated and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = await self._client.request(method, url, json=body, headers=headers)

        if response.status_code == 429 and _attempt < self._max_retries:
            retry_after = float(response.headers.get("retry-after", "0"))
            delay = max(retry_after, min(2 * (2 ** _attempt), 30))
            delay *= 0.8 + random.random() * 0.4
            logger.info(
                "Rate limited (429), retrying in %.1fs (attempt %d/%d)",
                delay, _attempt + 1, self._max_retries,
            )
            await asyncio.sleep(delay)
            return await self.request(method, url, body, authenticated, _attempt + 1)

        if response.status_code >= 400:
            message = _STATUS_MESSAGES.get(response.status_code)
            if message is None:
                try:
                    err_data = response.json()
                    message = err_data.get("error") or err_data.get("message")
                except Exception:
                    message = None
                message = message or (
                    f"API request failed with status {response.status_code}: "
                    f"{response.reason_phrase}"
                )
            raise InferenceError(message, response.status_code)

        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


class InferenceClient:
    """Text-classification client for the Hugging Face Inference API."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = HF_INFERENCE_URL,
        hub_url: str = HF_HUB_URL,
        timeout: float = 30.0,
        max_text_length: int = MAX_TEXT_LENGTH,
        max_retries: int = 0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.hub_url = hub_url.rstrip("/")
        self.max_text_length = max_text_length
        self._http = _HttpClient(api_key or None, timeout, max_retries)

    def set_api_key(self, api_key: str | None) -> None:
        self._http.api_key = api_key or None

    async def close(self) -> None:
        await self._http.close()

    async def analyze_sentiment(self, text: str, model_id: str) -> TransformerAnalysisResult:
        """Classify *text* with *model_id*.

        Failures are reported in ``error`` rather than raised. Predictions
        are lowercased and sorted by descending score.
        """
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            if len(text) > self.max_text_length:
                raise InferenceError(
                    f"Text too long. Maximum {self.max_text_length} characters allowed."
                )
            data = await self._http.request(
                "POST",
                f"{self.base_url}/{model_id}",
                {"inputs": text, "parameters": {"return_all_scores": True}},
            )
            predictions = self._parse_predictions(data)
        except (InferenceError, httpx.HTTPError, ValueError) as e:
            logger.warning("Inference with %s failed: %s", model_id, e)
            return TransformerAnalysisResult(
                model_used=model_id,
                processing_time_ms=_elapsed(),
                error=str(e) or "Analysis failed",
            )

        return TransformerAnalysisResult(
            predictions=predictions,
            model_used=model_id,
            processing_time_ms=_elapsed(),
        )

    @staticmethod
    def _parse_predictions(data: Any) -> list[SentimentPrediction]:
        if isinstance(data, list) and data:
            raw = data[0] if isinstance(data[0], list) else data
        elif isinstance(data, dict) and "label" in data and "score" in data:
            raw = [data]
        else:
            raise InferenceError("Unexpected response format from Hugging Face API")

        predictions = [
            SentimentPrediction(label=str(p["label"]).lower(), score=float(p["score"]))
            for p in raw
        ]
        predictions.sort(key=lambda p: p.score, reverse=True)
        return predictions

    async def validate_model(self, model_id: str) -> ModelValidationResult:
        """Check that *model_id* exists and is a text-classification model."""
        try:
            info = await self._http.request(
                "GET", f"{self.hub_url}/{url_quote(model_id, safe='/')}", authenticated=False
            )
        except InferenceError:
            return ModelValidationResult(
                is_valid=False,
                error=f"Model not found or not accessible: {model_id}",
            )
        except httpx.HTTPError as e:
            return ModelValidationResult(is_valid=False, error=str(e) or "Failed to validate model")

        tags = info.get("tags") or []
        if not (
            info.get("pipeline_tag") == "text-classification"
            or "text-classification" in tags
            or "sentiment-analysis" in tags
        ):
            return ModelValidationResult(
                is_valid=False,
                error="Model is not suitable for text classification/sentiment analysis",
            )

        return ModelValidationResult(
            is_valid=True,
            model_info=ModelInfo(
                id=info.get("id", model_id),
                task=info.get("pipeline_tag") or "text-classification",
                library_name=info.get("library_name"),
            ),
        )

    async def test_connection(self) -> bool:
        result = await self.analyze_sentiment(
            "Hello world", "cardiffnlp/twitter-roberta-base-sentiment-latest"
        )
        return result.error is None

    @staticmethod
    def convert_to_sentiment(predictions: list[SentimentPrediction]) -> tuple[str, int]:
        """Map the top prediction to ``(sentiment, confidence_percent)``."""
        if not predictions:
            return "neutral", 0

        top = predictions[0]
        label = top.label.lower()
        if (
            "positive" in label
            or "pos" in label
            or label in _POSITIVE_LABELS
            or "5 stars" in label
            or "4 stars" in label
        ):
            sentiment = "positive"
        elif (
            "negative" in label
            or "neg" in label
            or label in _NEGATIVE_LABELS
            or "1 star" in label
            or "2 stars" in label
        ):
            sentiment = "negative"
        else:
            sentiment = "neutral"
        return sentiment, _round_half_up(top.score * 100)

    # ---- Model catalogue ----

    @staticmethod
    def default_models() -> list[TransformerModel]:
        return list(DEFAULT_MODELS)

    @staticmethod
    def find_default_model(model_key: str) -> TransformerModel | None:
        return next((m for m in DEFAULT_MODELS if m.id == model_key), None)

    @staticmethod
    def create_custom_model(
        model_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> TransformerModel:
        return TransformerModel(
            id=f"custom-{int(time.time() * 1000)}",
            name=name or model_id,
            model_id=model_id,
            description=description or f"Custom model: {model_id}",
            labels=["negative", "neutral", "positive"],
        )


def model_id_from_endpoint(endpoint: str) -> str | None:
    """Extract ``org/model`` from a huggingface.co model URL."""
    parsed = urlparse(endpoint or "")
    if not parsed.netloc.endswith("huggingface.co"):
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if parts and parts[0] == "models":
        parts = parts[1:]
    if len(parts) < 2:
        return parts[0] if parts else None
    return f"{parts[0]}/{parts[1]}"


class SentimentAnalysisService:
    """Sentiment analysis on behalf of marketplace agents."""

    def __init__(self, client: InferenceClient, batch_delay: float = 0.1) -> None:
        self._client = client
        self._batch_delay = batch_delay

    def resolve_model_id(self, agent: Agent) -> str:
        """Model for *agent*: its Hugging Face endpoint, else the default."""
        return model_id_from_endpoint(agent.model_endpoint) or DEFAULT_MODELS[0].model_id

    async def analyze_with_agent(self, agent: Agent, text: str, request_id: int) -> SentimentResult:
        """Analyze *text* with the agent's model.

        Returns a neutral result with zero confidence if analysis fails.
        """
        result = await self._client.analyze_sentiment(text, self.resolve_model_id(agent))
        if result.error:
            logger.error("Sentiment analysis failed: %s", result.error)
            return SentimentResult(
                request_id=request_id,
                sentiment="neutral",
                confidence=0,
                observed_at=datetime.now(timezone.utc),
            )

        sentiment, confidence = self._client.convert_to_sentiment(result.predictions)
        return SentimentResult(
            request_id=request_id,
            sentiment=sentiment,
            confidence=confidence,
            observed_at=datetime.now(timezone.utc),
        )

    async def test_agent_model(self, agent: Agent, text: str | None = None) -> TransformerAnalysisResult:
        model_id = model_id_from_endpoint(agent.model_endpoint)
        if model_id is None:
            raise ValueError("No model configured for this agent")
        return await self._client.analyze_sentiment(
            text or "This is a test message for sentiment analysis.", model_id
        )

    async def batch_analyze(
        self,
        agent: Agent,
        texts: list[str],
        starting_request_id: int,
    ) -> list[SentimentResult]:
        """Analyze *texts* sequentially, spacing calls to avoid rate limits."""
        results: list[SentimentResult] = []
        for i, text in enumerate(texts):
            results.append(await self.analyze_with_agent(agent, text, starting_request_id + i))
            if i < len(texts) - 1:
                await asyncio.sleep(self._batch_delay)
        return results

    async def validate_model(self, model_id: str) -> ModelValidationResult:
        return await self._client.validate_model(model_id)

    def model_recommendations(self, use_case: str | None = None) -> list[TransformerModel]:
        models = self._client.default_models()
        if not use_case:
            return models

        key = use_case.lower()
        if key in ("financial", "finance", "trading"):
            return [m for m in models if "financial" in m.id]
        if key in ("social", "twitter", "social media"):
            return [
                m for m in models
                if "twitter" in m.description.lower() or "social" in m.description.lower()
            ]
        if key in ("reviews", "product", "ecommerce"):
            return [m for m in models if "review" in m.description.lower()]
        if key in ("emotions", "emotion"):
            return [m for m in models if "emotion" in m.id]
        return [m for m in models if "general" in m.id]

    @staticmethod
    def calculate_statistics(results: list[SentimentResult]) -> SentimentStatistics:
        if not results:
            return SentimentStatistics()

        total = len(results)
        positive = sum(1 for r in results if r.sentiment == "positive")
        neutral = sum(1 for r in results if r.sentiment == "neutral")
        negative = sum(1 for r in results if r.sentiment == "negative")
        average = sum(r.confidence for r in results) / total

        return SentimentStatistics(
            total=total,
            positive=positive,
            neutral=neutral,
            negative=negative,
            average_confidence=_round_half_up(average),
            distribution=SentimentDistribution(
                positive=_round_half_up(positive / total * 100),
                neutral=_round_half_up(neutral / total * 100),
                negative=_round_half_up(negative / total * 100),
            ),
        )
