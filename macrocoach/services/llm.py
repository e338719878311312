import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, Tuple

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from macrocoach.core.security import decrypt_api_key
from macrocoach.db.models import CoachAIConfig, ModelUsageStat
from macrocoach.db.session import get_db

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.75"))
COACH_MAX_TOKENS = int(os.getenv("COACH_MAX_TOKENS", "1000"))

SUPPORTED_PROVIDERS = {"openai", "gemini", "proxy"}

COACH_SYSTEM_INSTRUCTION = (
    "Reply in plain markdown. You may embed [BUTTON: label | route | {json}] and "
    "[TABLE: title | h1,h2 | r1c1,r1c2] tokens where they help the user act on your advice."
)


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


@dataclass(frozen=True)
class BackendResult:
    text: str
    tokens_used: Optional[int] = None
    confidence: Optional[float] = None
    provider: str = ""
    model: str = ""


@dataclass(frozen=True)
class ModelConfig:
    provider: str
    model: str
    api_key: str


def resolve_model_config(db: Session) -> ModelConfig:
    cfg = db.query(CoachAIConfig).order_by(CoachAIConfig.id.asc()).first()
    if cfg:
        return ModelConfig(
            provider=cfg.ai_provider.strip().lower(),
            model=cfg.ai_model,
            api_key=decrypt_api_key(cfg.encrypted_api_key),
        )

    provider = os.getenv("DEFAULT_AI_PROVIDER", "").strip().lower()
    model = os.getenv("DEFAULT_AI_MODEL", "").strip()
    if provider == "openai":
        key = os.getenv("OPENAI_API_KEY", "")
    elif provider == "gemini":
        key = os.getenv("GEMINI_API_KEY", "")
    elif provider == "proxy":
        key = os.getenv("COACH_PROXY_TOKEN", "")
        model = model or "proxy"
        if not os.getenv("COACH_PROXY_URL", "").strip():
            raise ValueError("AI config missing")
    else:
        key = ""

    if provider in SUPPORTED_PROVIDERS and model and (key or provider == "proxy"):
        return ModelConfig(provider=provider, model=model, api_key=key)
    raise ValueError("AI config missing")


def _status_detail(exc: httpx.HTTPStatusError) -> Tuple[Optional[int], str]:
    status = exc.response.status_code if exc.response is not None else None
    detail = ""
    if exc.response is not None:
        detail = (exc.response.text or "").strip()[:220]
    return status, detail or "no response body"


def _with_retries(provider: str, model: str, send: Callable[[], Tuple[str, dict[str, int]]]) -> Tuple[str, dict[str, int]]:
    label = provider.capitalize()
    attempts = max(1, LLM_RETRY_COUNT + 1)
    last_error = "unknown error"
    for idx in range(attempts):
        try:
            text, usage_tokens = send()
            if not text.strip():
                raise ValueError(f"{label} returned empty content")
            return text.strip(), usage_tokens
        except httpx.HTTPStatusError as exc:
            status, detail = _status_detail(exc)
            # 4xx other than rate limiting will not improve on retry.
            if status is not None and status < 500 and status != 429:
                raise LLMRequestError(
                    provider=provider,
                    model=model,
                    status_code=status,
                    message=f"{label} request failed (status={status}): {detail}",
                ) from exc
            last_error = f"status={status}: {detail}"
        except httpx.TimeoutException:
            last_error = "timed out while waiting for response"
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            last_error = str(exc)[:220]
        if idx < attempts - 1:
            time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
    raise LLMRequestError(provider=provider, model=model, message=f"{label} request failed: {last_error}")


def _openai_request(model: str, api_key: str, prompt: str, max_tokens: int) -> Tuple[str, dict[str, int]]:
    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": COACH_SYSTEM_INSTRUCTION},
            {"role": "user", "content": prompt},
        ],
        "max_completion_tokens": max_tokens,
    }
    # GPT-5 family may consume all tokens on reasoning unless explicitly lowered.
    if model.startswith("gpt-5"):
        payload["reasoning_effort"] = "low"
    response = httpx.post(
        "https://api.openai.com/v1/chat/completions",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json=payload,
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usage", {}) if isinstance(data, dict) else {}
    usage_tokens = {
        "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
        "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
        "total_tokens": int(usage.get("total_tokens", 0) or 0),
    }
    return str(data["choices"][0]["message"].get("content") or ""), usage_tokens


def _gemini_request(model: str, api_key: str, prompt: str, max_tokens: int) -> Tuple[str, dict[str, int]]:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
    response = httpx.post(
        url,
        headers={"Content-Type": "application/json"},
        json={
            "systemInstruction": {"parts": [{"text": COACH_SYSTEM_INSTRUCTION}]},
            "generationConfig": {"temperature": 0.4, "maxOutputTokens": max_tokens},
            "contents": [{"parts": [{"text": prompt}]}],
        },
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usageMetadata", {}) if isinstance(data, dict) else {}
    prompt_tokens = int(usage.get("promptTokenCount", 0) or 0)
    completion_tokens = int(usage.get("candidatesTokenCount", 0) or 0)
    usage_tokens = {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": int(usage.get("totalTokenCount", prompt_tokens + completion_tokens) or 0),
    }
    parts = data["candidates"][0]["content"]["parts"]
    return "".join(str(part.get("text", "")) for part in parts), usage_tokens


def _proxy_request(token: str, prompt: str, max_tokens: int) -> Tuple[str, dict[str, int], Optional[float]]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    response = httpx.post(
        os.getenv("COACH_PROXY_URL", "").strip(),
        headers=headers,
        json={"prompt": prompt, "maxTokens": max_tokens},
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError("Proxy returned a non-object payload")
    tokens = int(data.get("tokensUsed", 0) or 0)
    confidence = data.get("confidence")
    return (
        str(data.get("text") or ""),
        {"prompt_tokens": 0, "completion_tokens": tokens, "total_tokens": tokens},
        float(confidence) if confidence is not None else None,
    )


def _record_usage(db: Session, provider: str, model: str, usage_tokens: dict[str, int]) -> None:
    prompt_tokens = max(0, int(usage_tokens.get("prompt_tokens", 0) or 0))
    completion_tokens = max(0, int(usage_tokens.get("completion_tokens", 0) or 0))
    total_tokens = max(0, int(usage_tokens.get("total_tokens", prompt_tokens + completion_tokens) or 0))
    row = (
        db.query(ModelUsageStat)
        .filter(ModelUsageStat.provider == provider, ModelUsageStat.model == model)
        .first()
    )
    now = datetime.now(timezone.utc)
    if not row:
        row = ModelUsageStat(
            provider=provider,
            model=model,
            request_count=0,
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
            last_used_at=now,
        )
        db.add(row)
    row.request_count += 1
    row.prompt_tokens += prompt_tokens
    row.completion_tokens += completion_tokens
    row.total_tokens += total_tokens
    row.last_used_at = now


class GenerativeBackend(Protocol):
    def invoke(self, prompt: str, max_tokens: Optional[int] = None) -> BackendResult:
        ...


class RealGenerativeBackend:
    def __init__(self, db: Session):
        self.db = db

    def invoke(self, prompt: str, max_tokens: Optional[int] = None) -> BackendResult:
        config = resolve_model_config(self.db)
        budget = max_tokens or COACH_MAX_TOKENS
        confidence: Optional[float] = None
        if config.provider == "openai":
            text, usage_tokens = _with_retries(
                "openai", config.model, lambda: _openai_request(config.model, config.api_key, prompt, budget)
            )
        elif config.provider == "gemini":
            text, usage_tokens = _with_retries(
                "gemini", config.model, lambda: _gemini_request(config.model, config.api_key, prompt, budget)
            )
        elif config.provider == "proxy":
            captured: dict[str, Optional[float]] = {}

            def send() -> Tuple[str, dict[str, int]]:
                raw, usage, reported = _proxy_request(config.api_key, prompt, budget)
                captured["confidence"] = reported
                return raw, usage

            text, usage_tokens = _with_retries("proxy", config.model, send)
            confidence = captured.get("confidence")
        else:
            raise ValueError("Unsupported AI provider")
        _record_usage(self.db, config.provider, config.model, usage_tokens)
        self.db.commit()
        total = int(usage_tokens.get("total_tokens", 0) or 0)
        return BackendResult(
            text=text,
            tokens_used=total or None,
            confidence=confidence,
            provider=config.provider,
            model=config.model,
        )


def get_generative_backend(db: Session = Depends(get_db)) -> GenerativeBackend:
    return RealGenerativeBackend(db)
