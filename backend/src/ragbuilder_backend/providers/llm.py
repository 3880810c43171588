"""Streaming text generation: LangChain chat models (OpenAI, Gemini) and an offline extractive generator."""

from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Dict, Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Use the provided context to answer questions "
    "accurately and concisely. If the context doesn't contain enough information "
    "to answer the question, say so clearly."
)

_PROMPT_TEMPLATE = (
    "Context:\n{context}\n\nQuestion: {question}\n\n"
    "Please provide a helpful answer based on the context above."
)
_CONTEXT_PATTERN = re.compile(r"Context:\n(?P<context>.*?)\n\nQuestion:", re.DOTALL)
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*")


def build_prompt(context: str, question: str) -> str:
    return _PROMPT_TEMPLATE.format(context=context, question=question)


class TextGenerator(Protocol):
    """Generation provider yielding answer fragments as they are produced."""

    def generate(
        self,
        prompt: str,
        *,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        ...


class OpenAIChatGenerator:
    """Stream completions from an OpenAI chat model."""

    def __init__(self, model: str, api_key: str) -> None:
        if not api_key:
            raise ValueError("An OpenAI API key is required to use OpenAI generation.")
        self.model = model
        self._api_key = api_key

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        model_kwargs: Dict[str, str] = {}
        lowered = self.model.lower()
        if "gpt-5" in lowered or "o1" in lowered or "o3" in lowered:
            model_kwargs["reasoning_effort"] = "minimal"

        llm = ChatOpenAI(
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self._api_key,
            model_kwargs=model_kwargs,
        )
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        async for chunk in llm.astream(messages):
            content = chunk.content
            if isinstance(content, str) and content:
                yield content


class GeminiChatGenerator:
    """Stream completions from a Gemini model."""

    def __init__(self, model: str, api_key: str) -> None:
        if not api_key:
            raise ValueError("A Google API key is required to use Gemini generation.")
        self.model = model
        self._api_key = api_key

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        llm = ChatGoogleGenerativeAI(
            model=self.model,
            temperature=temperature,
            max_output_tokens=max_tokens,
            google_api_key=self._api_key,
        )
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        async for chunk in llm.astream(messages):
            content = chunk.content
            if isinstance(content, str) and content:
                yield content


class ExtractiveGenerator:
    """Offline generator that streams the leading sentences of the retrieved context."""

    def __init__(self, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        match = _CONTEXT_PATTERN.search(prompt)
        context = match.group("context").strip() if match else ""
        if not context:
            yield "The provided context does not contain enough information to answer this question."
            return

        budget = max(1, max_tokens) * 4
        emitted = 0
        for index, sentence in enumerate(_SENTENCE_PATTERN.findall(" ".join(context.split()))):
            if index >= self.max_sentences or emitted >= budget:
                break
            fragment = sentence.strip()
            if not fragment:
                continue
            fragment = fragment[: budget - emitted]
            yield fragment if emitted == 0 else f" {fragment}"
            emitted += len(fragment)


__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "ExtractiveGenerator",
    "GeminiChatGenerator",
    "OpenAIChatGenerator",
    "TextGenerator",
    "build_prompt",
]
