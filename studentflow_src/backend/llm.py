"""Text-generation providers and the ordered fallback chain in front of them.

Groq is tried first (fast, free tier, native JSON mode); Gemini is the fallback
and the only provider that accepts file parts. Each provider gets one attempt per
call; only total exhaustion reaches the caller as ``NoProviderAvailable``.
"""
import os
import re
import logging
from typing import List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI
from google import genai
from google.genai import types as genai_types

from errors import NoProviderAvailable, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

JSON_SYSTEM_PROMPT = "You are a helpful assistant. Always respond with valid JSON only, no markdown formatting."
PLAIN_SYSTEM_PROMPT = "You are a helpful assistant."

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?|\n?[ \t]*```", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences such as ```json ... ``` around a response."""
    return _FENCE_RE.sub("", text or "").strip()


class LLMProvider:
    """One text-generation backend. Subclasses call a single remote API."""

    name = "provider"
    supports_json_mode = False
    supports_files = False

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int, json_mode: bool) -> str:
        raise NotImplementedError

    async def complete_with_file(self, prompt: str, data: bytes, mime_type: str, *,
                                 temperature: float, max_tokens: int) -> str:
        raise NotImplementedError(f"{self.name} does not accept files")


class GroqProvider(LLMProvider):
    """Groq chat completions through its OpenAI-compatible endpoint."""

    name = "groq"
    supports_json_mode = True

    def __init__(self, api_key: str, model: str = GROQ_MODEL, client: Optional[AsyncOpenAI] = None):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=GROQ_BASE_URL)

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int, json_mode: bool) -> str:
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": JSON_SYSTEM_PROMPT if json_mode else PLAIN_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = await self.client.chat.completions.create(**kwargs)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""


class GeminiProvider(LLMProvider):
    """Google Gemini through the google-genai async client."""

    name = "gemini"
    supports_files = True

    def __init__(self, api_key: str, model: str = GEMINI_MODEL, client=None):
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int, json_mode: bool) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )
        response = await self.client.aio.models.generate_content(model=self.model, contents=prompt, config=config)
        return response.text or ""

    async def complete_with_file(self, prompt: str, data: bytes, mime_type: str, *,
                                 temperature: float, max_tokens: int) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[genai_types.Part.from_bytes(data=data, mime_type=mime_type), prompt],
            config=genai_types.GenerateContentConfig(temperature=temperature, max_output_tokens=max_tokens),
        )
        return response.text or ""


class ProviderChain:
    """Prioritized list of providers; the first one that answers wins."""

    def __init__(self, providers: List[LLMProvider]):
        self.providers = list(providers)

    @property
    def available(self) -> bool:
        return bool(self.providers)

    async def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2048,
                       json_mode: bool = True) -> str:
        _check_request(prompt, max_tokens)
        for provider in self.providers:
            try:
                text = await provider.complete(
                    prompt, temperature=temperature, max_tokens=max_tokens, json_mode=json_mode
                )
            except Exception as e:
                logger.error("%s completion failed, trying next provider: %s", provider.name, e)
                continue
            if json_mode and not provider.supports_json_mode:
                text = strip_code_fences(text)
            return text
        raise NoProviderAvailable(_exhausted_message(self.providers))

    async def complete_with_file(self, prompt: str, data: bytes, mime_type: str,
                                 temperature: float = 0.7, max_tokens: int = 4096) -> str:
        """Send a file alongside the prompt. Always expects a JSON answer."""
        _check_request(prompt, max_tokens)
        capable = [p for p in self.providers if p.supports_files]
        for provider in capable:
            try:
                text = await provider.complete_with_file(
                    prompt, data, mime_type, temperature=temperature, max_tokens=max_tokens
                )
            except Exception as e:
                logger.error("%s file completion failed, trying next provider: %s", provider.name, e)
                continue
            return strip_code_fences(text)
        raise NoProviderAvailable(_exhausted_message(capable, files=True))


def _check_request(prompt: str, max_tokens: int):
    if not prompt or not prompt.strip():
        raise ValidationError("Prompt must not be empty")
    if max_tokens <= 0:
        raise ValidationError("max_tokens must be positive")


def _exhausted_message(providers: List[LLMProvider], files: bool = False) -> str:
    if not providers:
        return "No AI provider available for file analysis" if files else "No AI provider available"
    return "All AI providers failed: " + ", ".join(p.name for p in providers)


def build_provider_chain() -> ProviderChain:
    """Build the chain from GROQ_API_KEY / GEMINI_API_KEY. Missing keys are skipped."""
    providers: List[LLMProvider] = []

    groq_key = os.getenv("GROQ_API_KEY")
    if groq_key:
        providers.append(GroqProvider(groq_key))
        logger.info("Groq AI provider initialized (primary, model=%s)", GROQ_MODEL)
    else:
        logger.warning("GROQ_API_KEY not set")

    gemini_key = os.getenv("GEMINI_API_KEY")
    if gemini_key:
        providers.append(GeminiProvider(gemini_key))
        logger.info("Gemini AI provider initialized (fallback, model=%s)", GEMINI_MODEL)
    else:
        logger.warning("GEMINI_API_KEY not set")

    return ProviderChain(providers)
