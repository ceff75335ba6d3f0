# llm_tracker.py

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import tiktoken
from langchain_core.messages import AIMessage
from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 30.0


class LLMCallError(Exception):
    """Raised when a text-generation call fails or returns nothing usable."""


@dataclass(frozen=True)
class LLMCall:
    """One successful completion and what it cost."""

    call_type: str
    model: str
    input_tokens: int
    output_tokens: int
    duration_seconds: float
    started_at: datetime

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.started_at.isoformat(),
            "call_type": self.call_type,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "duration_seconds": self.duration_seconds,
        }


class TokenTrackingLLM:
    """
    Direct OpenAI wrapper that tracks token usage for each call.

    Every request carries an explicit timeout and is attempted once; the
    caller decides what a failure means.
    """

    def __init__(self,
                 model: str = DEFAULT_MODEL,
                 temperature: float = 0,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 json_mode: bool = False,
                 api_key: Optional[str] = None,
                 client: Optional[OpenAI] = None):
        api_key = api_key or os.getenv('OPENAI_API_KEY')

        if client is None and not api_key:
            raise LLMCallError("OpenAI API key is required. Set OPENAI_API_KEY environment variable or pass api_key parameter.")

        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.json_mode = json_mode
        self.calls: List[LLMCall] = []
        self.name: Optional[str] = None
        self.tracker: Optional["LLMCallTracker"] = None
        self._encoder = None

    @property
    def encoder(self):
        if self._encoder is None:
            try:
                self._encoder = tiktoken.encoding_for_model(self.model)
            except KeyError:
                # Unknown model names fall back to the generic encoding
                self._encoder = tiktoken.get_encoding("cl100k_base")
        return self._encoder

    def count_tokens(self, text: str) -> int:
        """Local estimate for replies that come back without a usage block."""
        if not text:
            return 0
        return len(self.encoder.encode(str(text)))

    def invoke(self, prompt: str, call_type: str = "general") -> AIMessage:
        """
        Send one chat completion request and record its usage

        Args:
            prompt: The instruction document sent as a single user message
            call_type: Label for usage statistics (e.g. "analyzer", "validator")

        Returns:
            AIMessage with the raw reply text

        Raises:
            LLMCallError: on transport errors, timeouts, non-2xx statuses or an empty reply
        """
        start_time = datetime.now()
        request = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "timeout": self.timeout,
        }
        if self.json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**request)
        except OpenAIError as e:
            logger.error(f"OpenAI {call_type} call failed: {e}")
            raise LLMCallError(f"{call_type} call failed: {e}") from e

        response_content = response.choices[0].message.content if response.choices else None
        if not response_content:
            raise LLMCallError(f"{call_type} call returned an empty reply")

        usage = getattr(response, 'usage', None)
        if usage:
            input_tokens = usage.prompt_tokens
            output_tokens = usage.completion_tokens
        else:
            input_tokens = self.count_tokens(prompt)
            output_tokens = self.count_tokens(response_content)

        duration = (datetime.now() - start_time).total_seconds()

        call = LLMCall(
            call_type=call_type,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_seconds=duration,
            started_at=start_time,
        )
        self.calls.append(call)
        if self.tracker is not None:
            self.tracker.record(self.name, call)
        logger.debug(f"{call_type} call to {self.model} took {duration:.2f}s ({call.total_tokens} tokens)")

        return AIMessage(content=response_content)

    def get_call_history(self) -> List[Dict]:
        return [call.to_dict() for call in self.calls]

    def get_total_tokens(self) -> int:
        return sum(call.total_tokens for call in self.calls)

    def get_call_stats(self) -> Dict:
        """Totals for this instance; averages are 0 before the first call."""
        total_calls = len(self.calls)
        total_tokens = self.get_total_tokens()
        return {
            "total_calls": total_calls,
            "total_tokens": total_tokens,
            "total_input_tokens": sum(call.input_tokens for call in self.calls),
            "total_output_tokens": sum(call.output_tokens for call in self.calls),
            "average_tokens_per_call": total_tokens / total_calls if total_calls else 0,
            "total_duration": sum(call.duration_seconds for call in self.calls),
        }


class LLMCallTracker:
    """
    Process-wide usage totals.

    Registered LLMs report every successful call here, so usage survives the
    per-request LLM instances that produced it. Only running counts are kept,
    never the calls themselves. Requests run on the server's threadpool,
    hence the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._total_calls = 0
        self._total_tokens = 0
        self._by_llm: Dict[str, Dict[str, int]] = {}
        self._by_type: Dict[str, Dict[str, int]] = {}
        self._names: List[str] = []

    def register_llm(self, name: str, llm: TokenTrackingLLM):
        llm.name = name
        llm.tracker = self
        with self._lock:
            if name not in self._names:
                self._names.append(name)

    def record(self, name: str, call: LLMCall):
        with self._lock:
            self._total_calls += 1
            self._total_tokens += call.total_tokens
            for key, grouped in ((name, self._by_llm), (call.call_type, self._by_type)):
                counts = grouped.setdefault(key, {"count": 0, "tokens": 0})
                counts["count"] += 1
                counts["tokens"] += call.total_tokens

    def get_session_stats(self) -> Dict:
        """Usage grouped by registered LLM name and by call type"""
        with self._lock:
            return {
                "total_calls": self._total_calls,
                "total_tokens": self._total_tokens,
                "llms_used": list(self._names),
                "calls_by_llm": {name: dict(counts) for name, counts in self._by_llm.items()},
                "calls_by_type": {call_type: dict(counts) for call_type, counts in self._by_type.items()},
            }

    def clear(self):
        with self._lock:
            self._total_calls = 0
            self._total_tokens = 0
            self._by_llm.clear()
            self._by_type.clear()
            self._names.clear()


_global_tracker = LLMCallTracker()


def get_global_tracker() -> LLMCallTracker:
    return _global_tracker


def reset_global_tracker():
    _global_tracker.clear()
