"""Shared fakes for router, streaming and orchestrator tests."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from src.core.logger import OperationLogger
from src.core.models import ChatTurn, Completion, CompletionChunk
from src.infrastructure.history import InMemoryHistoryStore


class FakeGateway:
    """Scripted language model gateway.

    ``script`` sets the buffered completion for a (plugin, function);
    ``script_stream`` sets the chunks streamed for it. A function with only
    a buffered script streams its text as one fragment followed by the
    final chunk, so buffered and streaming answers match.
    """

    def __init__(self) -> None:
        self.completions: dict[tuple[str, str], Completion | Exception] = {}
        self.streams: dict[tuple[str, str], list[CompletionChunk | Exception]] = {}
        self.calls: list[dict[str, Any]] = []
        self.streams_closed = 0

    def script(
        self,
        plugin: str,
        function: str,
        text: str = "",
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        error: Exception | None = None,
    ) -> None:
        self.completions[(plugin, function)] = error or Completion(
            text=text, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens
        )

    def script_stream(
        self, plugin: str, function: str, chunks: list[CompletionChunk | Exception]
    ) -> None:
        self.streams[(plugin, function)] = chunks

    def functions_called(self) -> list[tuple[str, str]]:
        return [(call["plugin"], call["function"]) for call in self.calls]

    async def complete(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: Any = None,
    ) -> Completion:
        self.calls.append(
            {"question": question, "plugin": plugin, "function": function, "arguments": arguments}
        )
        result = self.completions[(plugin, function)]
        if isinstance(result, Exception):
            raise result
        return result

    async def complete_streaming(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: Any = None,
    ):
        self.calls.append(
            {
                "question": question,
                "plugin": plugin,
                "function": function,
                "arguments": arguments,
                "stream": True,
            }
        )
        chunks = self.streams.get((plugin, function))
        if chunks is None:
            completion = self.completions[(plugin, function)]
            if isinstance(completion, Exception):
                chunks = [completion]
            else:
                chunks = [
                    CompletionChunk(text=completion.text),
                    CompletionChunk(
                        prompt_tokens=completion.prompt_tokens,
                        completion_tokens=completion.completion_tokens,
                        is_final=True,
                    ),
                ]
        try:
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk
        finally:
            self.streams_closed += 1


class RecordingHistoryStore(InMemoryHistoryStore):
    """In-memory history store that counts mutations."""

    def __init__(self) -> None:
        super().__init__()
        self.added: list[tuple[ChatTurn, str | None]] = []
        self.cleared: list[str | None] = []

    async def add(self, turn: ChatTurn, session_key: str | None = None) -> None:
        self.added.append((turn, session_key))
        await super().add(turn, session_key)

    async def clear(self, session_key: str | None = None) -> None:
        self.cleared.append(session_key)
        await super().clear(session_key)


@pytest.fixture
def gateway():
    """Scripted gateway."""
    return FakeGateway()


@pytest.fixture
def history():
    """Recording in-memory history store."""
    return RecordingHistoryStore()


@pytest.fixture
def operation_logger():
    """Mock OperationLogger."""
    return MagicMock(spec=OperationLogger)


@pytest.fixture
def sample_account():
    """Storage account record as returned by Resource Graph."""
    return {
        "id": "/subscriptions/sub-123/resourceGroups/rg-data/providers/Microsoft.Storage/storageAccounts/xyz",
        "name": "xyz",
        "type": "microsoft.storage/storageaccounts",
        "location": "eastus",
        "resourceGroup": "rg-data",
        "sku": {"name": "Standard_LRS"},
        "tags": {},
    }


@pytest.fixture
def history_factory():
    """Factory for extra recording history stores."""
    return RecordingHistoryStore
