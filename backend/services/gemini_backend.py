"""Generative backend integration with the Google Gemini API."""
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Protocol

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from config import GenerationSettings
from services.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class BackendReply:
    """Complete (non-streamed) reply from the backend."""
    text: str
    raw: Dict[str, Any]
    latency_ms: int
    model_used: str


class GenerativeBackend(Protocol):
    """What the relay needs from a generative-AI backend."""

    def generate(
        self,
        model_name: str,
        system_instruction: str,
        history: List[Dict[str, Any]],
        prompt: str
    ) -> BackendReply:
        ...

    def generate_stream(
        self,
        model_name: str,
        system_instruction: str,
        history: List[Dict[str, Any]],
        prompt: str
    ) -> Iterator[str]:
        ...


def chunk_text(chunk: Any) -> str:
    """
    Text carried by a response or by one streamed chunk.

    Reads the parts directly: the SDK's .text accessor raises on chunks without
    text (e.g. a final chunk that only carries a finish reason).
    """
    candidates = getattr(chunk, "candidates", None)
    if not candidates:
        return ""
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []
    return "".join(part.text for part in parts if getattr(part, "text", ""))


class GeminiBackend:
    """Client for interfacing with the Gemini API for chat generation."""

    def __init__(self, api_key: str, generation: GenerationSettings = GenerationSettings()):
        """
        Initialize the Gemini backend.

        Args:
            api_key: Gemini API key
            generation: Sampling parameters applied to every request

        Raises:
            ValueError: If no API key is given
        """
        if not api_key:
            raise ValueError("GEMINI_API_KEY must be provided")

        self.api_key = api_key
        self.generation = generation
        genai.configure(api_key=api_key)
        logger.info("GeminiBackend initialized successfully")

    def _start_chat(self, model_name: str, system_instruction: str, history: List[Dict[str, Any]]):
        model = genai.GenerativeModel(
            model_name=model_name,
            system_instruction=system_instruction,
            generation_config=genai.GenerationConfig(
                temperature=self.generation.temperature,
                top_p=self.generation.top_p,
                top_k=self.generation.top_k,
                max_output_tokens=self.generation.max_output_tokens,
                candidate_count=self.generation.candidate_count,
            ),
        )
        return model.start_chat(history=history)

    def generate(
        self,
        model_name: str,
        system_instruction: str,
        history: List[Dict[str, Any]],
        prompt: str
    ) -> BackendReply:
        """
        Send one prompt on top of the given history and wait for the full reply.

        Args:
            model_name: Gemini model name
            system_instruction: System instruction for the model
            history: Prior turns in Gemini format ({"role", "parts"})
            prompt: The new user message

        Returns:
            BackendReply with text, raw response and latency

        Raises:
            UpstreamError: With the backend's own message as detail
        """
        start_time = time.time()

        try:
            logger.debug(f"Generating response with model: {model_name}")
            chat = self._start_chat(model_name, system_instruction, history)
            response = chat.send_message(prompt)

            latency_ms = int((time.time() - start_time) * 1000)
            text = chunk_text(response)

            logger.info(
                f"Generated response: model={model_name}, "
                f"history_turns={len(history)}, chars={len(text)}, "
                f"latency={latency_ms}ms"
            )

            return BackendReply(
                text=text,
                raw=response.to_dict(),
                latency_ms=latency_ms,
                model_used=model_name
            )
        except Exception as e:
            raise self._upstream_error(e, model_name, start_time) from e

    def generate_stream(
        self,
        model_name: str,
        system_instruction: str,
        history: List[Dict[str, Any]],
        prompt: str
    ) -> Iterator[str]:
        """
        Send one prompt and yield text fragments as Gemini emits them.

        Chunks without text are skipped. Errors raised while opening the stream
        or while iterating it surface as UpstreamError.
        """
        start_time = time.time()
        fragments = 0

        try:
            logger.debug(f"Streaming response with model: {model_name}")
            chat = self._start_chat(model_name, system_instruction, history)
            response = chat.send_message(prompt, stream=True)

            for chunk in response:
                text = chunk_text(chunk)
                if text:
                    fragments += 1
                    yield text
        except Exception as e:
            raise self._upstream_error(e, model_name, start_time) from e

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Streamed response: model={model_name}, "
            f"fragments={fragments}, latency={latency_ms}ms"
        )

    @staticmethod
    def _upstream_error(error: Exception, model_name: str, start_time: float) -> UpstreamError:
        latency_ms = int((time.time() - start_time) * 1000)
        details = {"model": model_name, "latency_ms": latency_ms, "error_type": type(error).__name__}

        if isinstance(error, google_exceptions.GoogleAPIError):
            logger.error(
                f"Gemini API error: model={model_name}, latency={latency_ms}ms, error={error}",
                exc_info=True,
                extra={"error_details": details}
            )
            message = getattr(error, "message", None) or str(error)
        else:
            logger.error(
                f"Unexpected Gemini error: model={model_name}, latency={latency_ms}ms, error={error}",
                exc_info=True,
                extra={"error_details": details}
            )
            message = str(error) or type(error).__name__

        return UpstreamError(message)
