"""统一的大模型调用封装，支持 OpenAI 兼容接口与 Gemini。"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from env import parse_float, parse_int

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a careful crypto market analyst. Base every conclusion only on the data provided "
    "and answer with a single JSON object, without markdown or commentary."
)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.5-flash",
}

_JSON_TAG_PATTERN = re.compile(r"<json>(.*?)</json>", re.IGNORECASE | re.DOTALL)
_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)

Prompt = Union[str, Sequence[Dict[str, str]]]


class LLMError(RuntimeError):
    """模型调用失败。"""


class LLMNotConfigured(LLMError):
    """环境未配置模型信息。"""


@dataclass
class LLMClient:
    provider: str
    api_key: str = field(repr=False)
    model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0
    temperature: float = 0.7
    max_tokens: int = 1000
    session: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.provider = self.provider.lower()
        if self.provider in {"chatgpt", "qwen", "dashscope"}:
            # Qwen/DashScope 走 OpenAI 兼容模式
            self.provider = "openai"
        elif self.provider == "google":
            self.provider = "gemini"
        if self.provider not in DEFAULT_MODELS:
            raise LLMNotConfigured(f"暂不支持的 LLM 提供商: {self.provider}")
        self.model = self.model or DEFAULT_MODELS[self.provider]
        if self.session is None:
            self.session = requests.Session()

    @classmethod
    def from_env(cls) -> "LLMClient":
        provider = os.getenv("LLM_PROVIDER")
        if not provider:
            if os.getenv("OPENAI_API_KEY"):
                provider = "openai"
            elif os.getenv("GEMINI_API_KEY"):
                provider = "gemini"
        if not provider:
            raise LLMNotConfigured("LLM_PROVIDER 未配置，也未检测到可用的 API Key")

        provider = provider.lower()
        if provider in {"gemini", "google"}:
            api_key = os.getenv("GEMINI_API_KEY")
            base_url = os.getenv("GEMINI_BASE_URL")
        else:
            api_key = os.getenv("OPENAI_API_KEY") or os.getenv("DASHSCOPE_API_KEY")
            base_url = os.getenv("OPENAI_BASE_URL")
        if not api_key:
            raise LLMNotConfigured(f"{provider} 的 API Key 未配置")

        return cls(
            provider=provider,
            api_key=api_key,
            model=os.getenv("LLM_MODEL"),
            base_url=base_url,
            timeout=parse_float("LLM_TIMEOUT", 30.0),
            temperature=parse_float("LLM_TEMPERATURE", 0.7),
            max_tokens=parse_int("LLM_MAX_TOKENS", 1000),
        )

    def chat(self, prompt: Prompt) -> str:
        messages = _normalize_messages(prompt)
        logger.debug("LLM 请求：provider=%s model=%s messages=%d", self.provider, self.model, len(messages))
        if self.provider == "gemini":
            return self._call_gemini(messages)
        return self._call_openai(messages)

    def chat_json(self, prompt: Prompt) -> Dict[str, Any]:
        text = self.chat(prompt)
        payload = extract_json(text)
        if payload is None:
            raise LLMError(f"模型输出中未找到 JSON 对象: {text[:200]}")
        return payload

    # --- Internal helpers ---

    def _call_openai(self, messages: List[Dict[str, str]]) -> str:
        base_url = (self.base_url or "https://api.openai.com/v1").rstrip("/")
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        data = self._post(
            f"{base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMError(f"OpenAI 响应解析失败: {data}") from exc

    def _call_gemini(self, messages: List[Dict[str, str]]) -> str:
        base_url = self.base_url or (
            f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        )
        contents = []
        for message in messages:
            role = "model" if message["role"] == "assistant" else "user"
            text = message["content"]
            if message["role"] == "system":
                text = "[SYSTEM]\n" + text
            contents.append({"role": role, "parts": [{"text": text}]})
        payload = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
                "responseMimeType": "application/json",
            },
        }
        data = self._post(base_url, payload, params={"key": self.api_key})
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMError(f"Gemini 响应解析失败: {data}") from exc

    def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                url,
                headers={"Content-Type": "application/json", **(headers or {})},
                params=params,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise LLMError(f"{self.provider} 请求异常: {exc}") from exc
        if resp.status_code != 200:
            raise LLMError(f"{self.provider} 请求失败: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise LLMError(f"{self.provider} 响应不是 JSON") from exc


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """从模型输出中提取第一个 JSON 对象，兼容 <json> 标签与 Markdown 代码块。"""
    if not text:
        return None
    candidates = []
    for pattern in (_JSON_TAG_PATTERN, _FENCE_PATTERN):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(1).strip())
    candidates.append(text.strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _normalize_messages(prompt: Prompt) -> List[Dict[str, str]]:
    if isinstance(prompt, str):
        return [
            {"role": "system", "content": DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    normalized: List[Dict[str, str]] = []
    allowed_roles = {"system", "user", "assistant"}
    for message in prompt:
        if not isinstance(message, dict):
            continue
        role = str(message.get("role", "user") or "user").lower()
        content = message.get("content", "")
        if not isinstance(content, str):
            content = str(content)
        if role not in allowed_roles:
            content = f"[{role.upper()}]\n" + content
            role = "user"
        normalized.append({"role": role, "content": content})
    if not normalized:
        raise LLMError("提示词为空")
    return normalized
