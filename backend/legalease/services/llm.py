from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from legalease.config import Settings
from legalease.errors import AnalysisFailed, ConfigurationError

try:
    import google.generativeai as genai
except Exception:  # pragma: no cover
    genai = None  # type: ignore

try:
    from llama_cpp import Llama  # type: ignore
except Exception:  # pragma: no cover
    Llama = None  # type: ignore


logger = logging.getLogger("legalease.llm")


class LLMClient(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class GeminiClient:
    """Text generation through the Gemini API."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", timeout: float = 60.0) -> None:
        if genai is None:
            raise ConfigurationError("google-generativeai is not installed")
        if not api_key:
            raise ConfigurationError("Missing Gemini API key")
        genai.configure(api_key=api_key)
        self.model_name = model
        self.timeout = timeout
        self._model = genai.GenerativeModel(model)

    async def generate(self, prompt: str) -> str:
        try:
            response = await asyncio.wait_for(self._model.generate_content_async(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AnalysisFailed(f"Gemini request timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            logger.exception("Gemini request failed")
            raise AnalysisFailed(f"Failed to get AI response: {exc}") from exc
        try:
            return str(response.text or "")
        except ValueError as exc:
            # Raised when the candidate was blocked
            raise AnalysisFailed(f"Gemini returned no text: {exc}") from exc


class LlamaCppClient:
    """Local generation with a GGUF model through llama-cpp."""

    def __init__(self, model_path: str, timeout: float = 60.0, n_ctx: int = 8192, max_tokens: int = 2048) -> None:
        if Llama is None:
            raise ConfigurationError("llama-cpp-python is not available. Install it to enable local analysis.")
        p = Path(model_path).expanduser() if model_path else None
        if p is None or not p.exists():
            raise ConfigurationError(f"LLM model file not found: {model_path or '<unset>'}")
        self.model_path = p
        self.timeout = timeout
        self.n_ctx = n_ctx
        self.max_tokens = max_tokens
        self._llm = None
        self._lock = threading.Lock()

    def _complete(self, prompt: str) -> str:
        with self._lock:
            if self._llm is None:
                self._llm = Llama(model_path=str(self.model_path), n_ctx=self.n_ctx, verbose=False)
            resp = self._llm.create_chat_completion(
                messages=[{"role": "user", "content": prompt}],
                temperature=0.2,
                top_p=0.9,
                max_tokens=self.max_tokens,
            )
        return str(resp["choices"][0]["message"]["content"])

    async def generate(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._complete, prompt), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AnalysisFailed(f"Local model timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            logger.exception("Local model request failed")
            raise AnalysisFailed(f"Failed to get AI response: {exc}") from exc


def create_llm_client(settings: Settings) -> LLMClient:
    if settings.llm_backend == "llama_cpp":
        return LlamaCppClient(settings.llm_model_path, timeout=settings.analysis_timeout_seconds)
    return GeminiClient(settings.gemini_api_key, model=settings.gemini_model, timeout=settings.analysis_timeout_seconds)


def clean_markdown(text: str) -> str:
    """Strip bold/italic markers and heading hashes from model output."""
    t = re.sub(r"\*\*(.*?)\*\*", r"\1", text or "")
    t = re.sub(r"\*(.*?)\*", r"\1", t)
    t = re.sub(r"#{1,6}\s", "", t)
    return t.strip()


def parse_json_lenient(text: str) -> Optional[Any]:
    """Parse JSON, falling back to the outermost {...} block."""
    t = (text or "").strip()
    try:
        return json.loads(t)
    except ValueError:
        pass
    start = t.find("{")
    end = t.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(t[start : end + 1])
        except ValueError:
            pass
    return None
