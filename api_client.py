# api_client.py

import base64
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from anthropic import AsyncAnthropic
from google import genai
from google.genai import types
from openai import AsyncOpenAI

from config import (
    ANTHROPIC_API_KEY, ANTHROPIC_MODEL, API_VERIFY_SSL, DEEPSEEK_API_KEY, DEEPSEEK_BASE_URL,
    DEEPSEEK_MODEL, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, GOOGLE_AI_API_KEY, GOOGLE_AI_MODEL,
    OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, PROVIDER_TIMEOUT
)
from exceptions import ProviderError
from prompts import SYSTEM_MESSAGE
from schemas import ProviderHandle
from utils import log


@dataclass
class CompletionOptions:
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    image: Optional[bytes] = None
    image_mime_type: Optional[str] = None
    timeout: float = PROVIDER_TIMEOUT
    system: str = SYSTEM_MESSAGE

    @property
    def has_image(self) -> bool:
        return bool(self.image)

    def image_base64(self) -> str:
        return base64.b64encode(self.image).decode("utf-8")


class ProviderClient(ABC):
    """
    One language-model vendor behind a single capability interface.

    A client without credentials reports is_configured=False and never builds
    an SDK client. SDK exceptions and empty responses surface as ProviderError.
    """

    supports_vision = False

    def __init__(self, name: str, api_key: Optional[str], model: str):
        self.name = name
        self.model = model
        self._api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def handle(self) -> ProviderHandle:
        return ProviderHandle(name=self.name, is_configured=self.is_configured, supports_vision=self.supports_vision)

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        if not self.is_configured:
            raise ProviderError(self.name, "not configured")
        if options.has_image and not self.supports_vision:
            raise ProviderError(self.name, "model does not accept document images")

        start_time = time.perf_counter()
        try:
            text = await self._complete(prompt, options)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(self.name, f"{e.__class__.__name__}: {e}") from e

        if not text or not text.strip():
            raise ProviderError(self.name, "empty response")
        duration = time.perf_counter() - start_time
        log.info(f"[{self.name}] Completion from '{self.model}' in {duration:.2f}s ({len(text)} chars).")
        return text

    @abstractmethod
    async def _complete(self, prompt: str, options: CompletionOptions) -> str:
        ...

    async def close(self):
        pass


class OpenAICompatibleClient(ProviderClient):
    """OpenAI and OpenAI-compatible endpoints such as DeepSeek."""

    def __init__(self, name: str, api_key: Optional[str], model: str,
                 base_url: Optional[str] = None, supports_vision: bool = True):
        super().__init__(name, api_key, model)
        self.supports_vision = supports_vision
        self._client = None
        if self.is_configured:
            http_client = httpx.AsyncClient(http2=True, verify=API_VERIFY_SSL, timeout=PROVIDER_TIMEOUT)
            self._client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, max_retries=0, http_client=http_client
            )
            log.info(f"Initialized {name} client for model '{model}'.")

    def _prepare_request_messages(self, prompt: str, options: CompletionOptions) -> List[Dict]:
        """Prepares the 'messages' payload for the chat completions API."""
        content_parts = [{"type": "text", "text": prompt}]
        if options.has_image:
            data_url = f"data:{options.image_mime_type};base64,{options.image_base64()}"
            if options.image_mime_type == "application/pdf":
                content_parts.append({"type": "file", "file": {"filename": "document.pdf", "file_data": data_url}})
            else:
                content_parts.append({"type": "image_url", "image_url": {"url": data_url}})
        return [
            {"role": "system", "content": options.system},
            {"role": "user", "content": content_parts},
        ]

    async def _complete(self, prompt: str, options: CompletionOptions) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=self._prepare_request_messages(prompt, options),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            response_format={"type": "json_object"},
        )
        if response.usage:
            log.info(f"[{self.name}] Tokens -> Prompt: {response.usage.prompt_tokens}, "
                     f"Completion: {response.usage.completion_tokens}, "
                     f"Total: {response.usage.total_tokens}")
        if not response.choices or not response.choices[0].message:
            return ""
        return response.choices[0].message.content or ""

    async def close(self):
        if self._client is not None:
            await self._client.close()
            log.info(f"Closed {self.name} client.")


class AnthropicClient(ProviderClient):
    supports_vision = True

    def __init__(self, api_key: Optional[str], model: str, name: str = "anthropic"):
        super().__init__(name, api_key, model)
        self._client = None
        if self.is_configured:
            self._client = AsyncAnthropic(api_key=api_key, max_retries=0, timeout=PROVIDER_TIMEOUT)
            log.info(f"Initialized {name} client for model '{model}'.")

    async def _complete(self, prompt: str, options: CompletionOptions) -> str:
        content = []
        if options.has_image:
            block_type = "document" if options.image_mime_type == "application/pdf" else "image"
            content.append({
                "type": block_type,
                "source": {"type": "base64", "media_type": options.image_mime_type, "data": options.image_base64()},
            })
        content.append({"type": "text", "text": prompt})

        message = await self._client.messages.create(
            model=self.model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=options.system,
            messages=[{"role": "user", "content": content}],
        )
        if message.usage:
            log.info(f"[{self.name}] Tokens -> Input: {message.usage.input_tokens}, "
                     f"Output: {message.usage.output_tokens}")
        return "".join(block.text for block in message.content if getattr(block, "type", None) == "text")

    async def close(self):
        if self._client is not None:
            await self._client.close()
            log.info(f"Closed {self.name} client.")


class GeminiClient(ProviderClient):
    supports_vision = True

    def __init__(self, api_key: Optional[str], model: str, name: str = "google"):
        super().__init__(name, api_key, model)
        self._client = None
        if self.is_configured:
            self._client = genai.Client(api_key=api_key)
            log.info(f"Initialized {name} client for model '{model}'.")

    async def _complete(self, prompt: str, options: CompletionOptions) -> str:
        contents = [prompt]
        if options.has_image:
            contents.insert(0, types.Part.from_bytes(data=options.image, mime_type=options.image_mime_type))

        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=options.system,
                temperature=options.temperature,
                max_output_tokens=options.max_tokens,
                response_mime_type="application/json",
            ),
        )
        return response.text or ""


def build_provider_clients() -> Dict[str, ProviderClient]:
    """Builds every known provider from configuration; unconfigured ones stay in the map as handles."""
    clients = [
        OpenAICompatibleClient("deepseek", DEEPSEEK_API_KEY, DEEPSEEK_MODEL, base_url=DEEPSEEK_BASE_URL,
                               supports_vision=False),
        OpenAICompatibleClient("openai", OPENAI_API_KEY, OPENAI_MODEL, base_url=OPENAI_BASE_URL),
        AnthropicClient(ANTHROPIC_API_KEY, ANTHROPIC_MODEL),
        GeminiClient(GOOGLE_AI_API_KEY, GOOGLE_AI_MODEL),
    ]
    configured = [client.name for client in clients if client.is_configured]
    log.info(f"Provider clients built. Configured: {configured or 'none'}.")
    return {client.name: client for client in clients}
