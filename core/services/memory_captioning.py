"""
Screenshot captioning for visual memories.

The provider calls an OpenAI-compatible chat completions endpoint with the
image attached as a data URI. ``generate_caption`` wraps it and always
returns a non-empty caption: provider failures and missing image data fall
back to deterministic templates.
"""

from __future__ import annotations

import asyncio
import random
import re
import threading
import time
from typing import Any, Mapping, Optional

import httpx

import core.config as config
from core.errors import CaptionProviderError

logger = config.logger

DESCRIPTIVE_MAX_LENGTH = 200
CONCISE_MAX_LENGTH = 100
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

DESCRIPTIVE_SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes screenshots to generate detailed, descriptive captions "
    "for working memory context. Describe what you see in the image clearly and thoroughly."
)
CONCISE_SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes screenshots to generate concise, crisp captions "
    "for long-term memory storage. Provide brief, informative descriptions of what you see."
)

_BOLD = re.compile(r"\*\*")
_ITALIC = re.compile(r"\*")
_HEADER = re.compile(r"#{1,6}\s")
_NEWLINES = re.compile(r"\n+")


class CaptionCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
            }


def build_caption_prompt(query: Optional[str], is_descriptive: bool) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for one caption request."""
    if is_descriptive:
        if query:
            prompt = (
                "Analyze this screenshot and provide a detailed description of what you see. "
                f'This is for a user query: "{query}". '
                "Describe the screen content that would be relevant to this query."
            )
        else:
            prompt = (
                "Analyze this screenshot and provide a detailed description of what you see on the screen. "
                "Focus on the main content and interface elements."
            )
        return DESCRIPTIVE_SYSTEM_PROMPT, prompt
    if query:
        prompt = (
            "Analyze this screenshot and provide a brief, informative caption. "
            f'This relates to the user query: "{query}". Keep the caption concise but descriptive.'
        )
    else:
        prompt = (
            "Analyze this screenshot and provide a brief, informative caption "
            "describing the main content or purpose of what is shown."
        )
    return CONCISE_SYSTEM_PROMPT, prompt


def clean_caption(raw: str, is_descriptive: bool) -> str:
    caption = _BOLD.sub("", raw)
    caption = _ITALIC.sub("", caption)
    caption = _HEADER.sub("", caption)
    caption = _NEWLINES.sub(" ", caption).strip()
    limit = DESCRIPTIVE_MAX_LENGTH if is_descriptive else CONCISE_MAX_LENGTH
    if len(caption) > limit:
        caption = caption[: limit - 3] + "..."
    return caption


def fallback_caption(query: Optional[str], is_descriptive: bool, metadata: Optional[Mapping[str, Any]] = None) -> str:
    metadata = metadata or {}
    if is_descriptive:
        if query:
            return f'Current screen showing desktop application context for query: "{query}"'
        return f"Current desktop screen captured at {metadata.get('context')} - showing active application interface"
    if query:
        suffix = "..." if len(query) > 30 else ""
        return f"Desktop Application - {query[:30]}{suffix}"
    return "Desktop screenshot captured"


def _image_url(image_data: str) -> str:
    if image_data.startswith("data:"):
        return image_data
    return f"data:image/png;base64,{image_data}"


async def _async_sleep_backoff(attempt: int) -> None:
    base = config.CAPTION_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    jitter = random.uniform(0, config.CAPTION_RETRY_JITTER_SECONDS)
    await asyncio.sleep(base + jitter)


class OpenAICaptionProvider:
    """Vision captions through ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        breaker: Optional[CaptionCircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.model = model or config.CAPTION_MODEL
        self.breaker = breaker or CaptionCircuitBreaker(
            failure_threshold=config.CAPTION_FAILURE_THRESHOLD,
            cooldown_seconds=config.CAPTION_COOLDOWN_SECONDS,
        )
        self._transport = transport

    def _unavailable(self, detail: str) -> None:
        logger.warning(f"Caption provider unavailable: {detail}")
        raise CaptionProviderError("caption provider unavailable")

    async def generate(self, image_data: str, prompt: str, system_prompt: Optional[str] = None) -> str:
        if not self.api_key:
            self._unavailable("missing api key")
        if self.breaker.is_open():
            self._unavailable("circuit breaker open")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": _image_url(image_data)}},
                ],
            }
        )
        payload = {"model": self.model, "messages": messages, "max_tokens": config.CAPTION_MAX_TOKENS}
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        timeout = httpx.Timeout(config.CAPTION_TIMEOUT_SECONDS)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            for attempt in range(config.CAPTION_RETRY_MAX + 1):
                try:
                    response = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
                except httpx.RequestError as exc:
                    if attempt >= config.CAPTION_RETRY_MAX:
                        self.breaker.record_failure(str(exc))
                        self._unavailable(str(exc))
                    await _async_sleep_backoff(attempt)
                    continue

                if response.status_code in RETRYABLE_STATUS:
                    if attempt >= config.CAPTION_RETRY_MAX:
                        self.breaker.record_failure(f"status {response.status_code}")
                        self._unavailable(f"status {response.status_code}")
                    await _async_sleep_backoff(attempt)
                    continue
                if response.status_code >= 400:
                    self.breaker.record_failure(f"status {response.status_code}")
                    self._unavailable(f"status {response.status_code}")

                data = response.json()
                try:
                    text = data["choices"][0]["message"]["content"]
                except (KeyError, IndexError, TypeError):
                    self.breaker.record_failure("malformed response")
                    self._unavailable("malformed response")
                if not text or not str(text).strip():
                    self.breaker.record_failure("empty response")
                    self._unavailable("empty response")
                self.breaker.record_success()
                return str(text)
        self._unavailable("retries exhausted")


def build_caption_provider():
    if config.CAPTION_PROVIDER == "none":
        return None
    return OpenAICaptionProvider()


async def generate_caption(
    provider,
    query: Optional[str],
    image_data: Optional[str],
    is_descriptive: bool,
    metadata: Optional[Mapping[str, Any]] = None,
) -> str:
    """Caption a screenshot. Never raises and never returns an empty string."""
    try:
        if image_data and provider is not None:
            system_prompt, prompt = build_caption_prompt(query, is_descriptive)
            try:
                caption = clean_caption(await provider.generate(image_data, prompt, system_prompt), is_descriptive)
                if caption:
                    return caption
                logger.warning("Caption provider returned an empty caption; using fallback")
            except Exception as exc:
                logger.warning(f"Screenshot captioning failed; using fallback: {exc}")
        return fallback_caption(query, is_descriptive, metadata)
    except Exception as exc:
        logger.warning(f"Caption fallback failed: {exc}")
        return "Current screen context" if is_descriptive else "Desktop screenshot"
