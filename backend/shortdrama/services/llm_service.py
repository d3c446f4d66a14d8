import requests
import json
import asyncio
from typing import Dict, Any, List, Optional, Sequence
import logging
import os
import re
from pathlib import Path
from logging.handlers import RotatingFileHandler

from shortdrama.core.config import settings, OpenAIConfig, AnthropicConfig, TextProviderPolicy
from shortdrama.core.errors import ProviderFailure

logger = logging.getLogger(__name__)

_llm_call_logger = logging.getLogger("llm_call_audit")
if not _llm_call_logger.handlers:
    try:
        log_dir = Path(settings.BASE_DIR) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "llm_calls.log"
        max_bytes = int(os.getenv("LLM_CALL_LOG_MAX_BYTES", str(20 * 1024 * 1024)))
        backup_count = int(os.getenv("LLM_CALL_LOG_BACKUP_COUNT", "5"))
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)s | %(message)s'))
        _llm_call_logger.addHandler(file_handler)
        _llm_call_logger.setLevel(logging.INFO)
        _llm_call_logger.propagate = False
    except OSError as e:
        logger.warning(f"Failed to initialize llm_call_audit logger: {e}")


def _safe_log_json(tag: str, payload: Dict[str, Any]) -> None:
    try:
        _llm_call_logger.info("%s %s", tag, json.dumps(payload, ensure_ascii=False, default=str))
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to write llm call audit log ({tag}): {e}")


def sanitize_text_output(text: str) -> str:
    if not isinstance(text, str) or not text:
        return text

    cleaned = text
    cleaned = re.sub(r"<think\b[^>]*>[\s\S]*?</think>", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"<think\b[^>]*>[\s\S]*$", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"</think>", "", cleaned, flags=re.IGNORECASE)

    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _extract_text_from_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks = []
        for item in content:
            if isinstance(item, dict):
                txt = item.get("text")
                if isinstance(txt, str) and txt.strip():
                    chunks.append(txt)
            elif isinstance(item, str) and item.strip():
                chunks.append(item)
        return "\n".join(chunks).strip()
    return ""


class ChatProvider:
    name = "base"

    @property
    def configured(self) -> bool:
        raise NotImplementedError

    @property
    def model(self) -> str:
        raise NotImplementedError

    async def generate(self, prompt: str, system_prompt: Optional[str] = None, temperature: Optional[float] = None) -> str:
        raise NotImplementedError

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: int) -> Dict[str, Any]:
        def _do_post():
            return requests.post(url, json=payload, headers=headers, timeout=timeout)

        _safe_log_json("REQUEST", {"provider": self.name, "model": payload.get("model"), "url": url, "prompt_chars": len(json.dumps(payload, ensure_ascii=False))})
        try:
            resp = await asyncio.to_thread(_do_post)
        except requests.exceptions.Timeout as e:
            _safe_log_json("ERROR", {"provider": self.name, "error": "timeout", "details": str(e)})
            raise ProviderFailure(f"{self.name} request timeout", str(e))
        except requests.exceptions.RequestException as e:
            _safe_log_json("ERROR", {"provider": self.name, "error": "request_failed", "details": str(e)})
            raise ProviderFailure(f"{self.name} request failed", str(e))

        if resp.status_code != 200:
            _safe_log_json("ERROR", {"provider": self.name, "status": resp.status_code, "body": resp.text[:2000]})
            raise ProviderFailure(f"{self.name} API error {resp.status_code}", resp.text[:500])

        try:
            data = resp.json()
        except ValueError:
            raise ProviderFailure(f"{self.name} returned a non-JSON response", resp.text[:500])
        _safe_log_json("RESPONSE", {"provider": self.name, "usage": data.get("usage")})
        return data


class OpenAIChatProvider(ChatProvider):
    """OpenAI-compatible ``/chat/completions`` endpoint."""
    name = "openai"

    def __init__(self, config: OpenAIConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.configured

    @property
    def model(self) -> str:
        return self.config.model

    def _extract_text_from_response(self, full_response: Dict[str, Any]) -> str:
        choices = full_response.get("choices") or []
        first = choices[0] if choices else {}
        if isinstance(first, dict):
            message = first.get("message") or {}
            if isinstance(message, dict):
                text = _extract_text_from_content(message.get("content"))
                if text:
                    return text
                refusal = message.get("refusal")
                if isinstance(refusal, str) and refusal.strip():
                    return refusal

            choice_text = first.get("text")
            if isinstance(choice_text, str) and choice_text.strip():
                return choice_text

        return ""

    async def generate(self, prompt: str, system_prompt: Optional[str] = None, temperature: Optional[float] = None) -> str:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": 0.7 if temperature is None else temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        data = await self._post(f"{self.config.base_url}/chat/completions", payload, headers, self.config.timeout)
        return sanitize_text_output(self._extract_text_from_response(data))


class AnthropicChatProvider(ChatProvider):
    """Anthropic ``/messages`` endpoint."""
    name = "anthropic"
    API_VERSION = "2023-06-01"

    def __init__(self, config: AnthropicConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.configured

    @property
    def model(self) -> str:
        return self.config.model

    async def generate(self, prompt: str, system_prompt: Optional[str] = None, temperature: Optional[float] = None) -> str:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.7 if temperature is None else temperature,
        }
        if system_prompt:
            payload["system"] = system_prompt
        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }
        data = await self._post(f"{self.config.base_url}/messages", payload, headers, self.config.timeout)
        return sanitize_text_output(_extract_text_from_content(data.get("content")))


class TextGenerationService:
    """Chooses a text provider deterministically.

    An explicitly requested provider wins when it is configured. Otherwise the
    policy's precedence list is walked and the first configured provider is used.
    """

    def __init__(self, providers: Sequence[ChatProvider], policy: TextProviderPolicy):
        self.providers = {provider.name: provider for provider in providers}
        self.policy = policy

    def select_provider(self, requested: Optional[str] = None) -> ChatProvider:
        if requested:
            provider = self.providers.get(requested.strip().lower())
            if provider is None:
                raise ProviderFailure(f"Unknown text provider: {requested}")
            if provider.configured:
                return provider
            logger.info(f"Requested text provider {requested} is not configured; using precedence list")

        for name in self.policy.precedence:
            provider = self.providers.get(name)
            if provider is not None and provider.configured:
                return provider
        raise ProviderFailure("No AI API key configured")

    def describe(self) -> List[Dict[str, Any]]:
        ordered = list(self.policy.precedence) + [n for n in self.providers if n not in self.policy.precedence]
        return [
            {"name": name, "configured": self.providers[name].configured, "model": self.providers[name].model}
            for name in ordered
            if name in self.providers
        ]

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        provider: Optional[str] = None,
    ) -> str:
        selected = self.select_provider(provider)
        logger.info(f"Text generation via {selected.name} model={selected.model}")
        text = await selected.generate(prompt, system_prompt=system_prompt, temperature=temperature)
        if not text:
            raise ProviderFailure(f"{selected.name} returned an empty response")
        return text


def extract_json_array(text: str) -> List[Any]:
    """Pull the first JSON array out of model output, tolerating code fences and chatter."""
    if not isinstance(text, str) or not text.strip():
        raise ProviderFailure("Model returned no content")

    cleaned = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, list):
            return parsed
    except ValueError:
        pass

    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end <= start:
        raise ProviderFailure("Model output did not contain a JSON array", text[:300])
    try:
        parsed = json.loads(cleaned[start:end + 1])
    except ValueError as e:
        raise ProviderFailure("Model output was not valid JSON", str(e))
    if not isinstance(parsed, list):
        raise ProviderFailure("Model output was not a JSON array")
    return parsed


def build_text_generation_service(app_settings=settings) -> TextGenerationService:
    return TextGenerationService(
        providers=[
            OpenAIChatProvider(app_settings.openai_config()),
            AnthropicChatProvider(app_settings.anthropic_config()),
        ],
        policy=app_settings.text_provider_policy(),
    )
