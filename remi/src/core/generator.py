"""
Remi - Generation Client
=========================
Sends a composed ``(system_instruction, user_prompt)`` pair to Gemini
through LangChain's ``ChatGoogleGenerativeAI`` and returns the reply text.

Errors, timeouts and empty completions all raise ``GenerationFailure``.
Unlike the first relay prototype there is no canned "having trouble
thinking" reply here: the orchestrator decides what the sender sees.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable

from langchain_core.messages import HumanMessage, SystemMessage

from remi.config.settings import settings
from remi.src.core.errors import GenerationFailure
from remi.src.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Generator(Protocol):
    """Anything that can turn a system instruction + prompt into reply text."""

    async def generate(self, system_instruction: str, user_prompt: str) -> str: ...


class GeminiGenerator:
    """
    ``Generator`` backed by Gemini via LangChain.

    Parameters
    ----------
    llm
        Optional pre-built chat model exposing ``ainvoke`` (injected in tests).
    timeout
        Seconds before a call is abandoned.  Defaults to ``settings.GENERATION_TIMEOUT_S``.
    """

    __slots__ = ("_llm", "_timeout")

    def __init__(self, llm: object | None = None, timeout: float | None = None) -> None:
        self._llm = llm or self._init_llm()
        self._timeout: float = timeout if timeout is not None else settings.GENERATION_TIMEOUT_S


    @staticmethod
    def _init_llm() -> object:
        """Initialise the Gemini chat model via LangChain."""
        from langchain_google_genai import ChatGoogleGenerativeAI

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("[LLM] Initialised %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        return llm


    async def generate(self, system_instruction: str, user_prompt: str) -> str:
        messages = [SystemMessage(content=system_instruction), HumanMessage(content=user_prompt)]

        t_start = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._llm.ainvoke(messages), timeout=self._timeout)  # type: ignore[attr-defined]
        except asyncio.TimeoutError as exc:
            raise GenerationFailure(f"Generation timed out after {self._timeout:.1f}s.") from exc
        except Exception as exc:
            raise GenerationFailure(f"Generation call failed: {exc}") from exc

        text = self._extract_text(response).strip()
        if not text:
            raise GenerationFailure("Generation returned an empty completion.")

        logger.info("[LLM] Reply in %.1fms (%d chars)", (time.perf_counter() - t_start) * 1000, len(text))
        return text


    @staticmethod
    def _extract_text(response: object) -> str:
        """Flatten a LangChain message whose content may be a string or a list of parts."""
        content = getattr(response, "content", response)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for part in content:
                if isinstance(part, str):
                    parts.append(part)
                elif isinstance(part, dict) and part.get("type", "text") == "text":
                    parts.append(str(part.get("text", "")))
            return "".join(parts)
        return ""
