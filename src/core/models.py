"""Core data models shared by the routing and streaming layers.

This module defines the records that flow between the orchestrator,
the intent routers and the infrastructure collaborators:

- ChatTurn: one question/answer exchange, the unit of chat history
- OperationContext: correlation record for one logical operation
- StreamingState: accumulator threaded through one streaming exchange
- Completion / CompletionChunk: what the language model gateway returns
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Intent(str, Enum):
    """Top-level intent labels returned by the general classifier."""

    AZURE = "Azure"
    MULTIPLE_INTENTS = "MultipleIntents"
    STORAGE = "Storage"
    INFORMATION = "Information"
    ABILITY = "Ability"
    UNCLEAR = "Unclear"
    OTHER = "Other"


class StorageIntent(str, Enum):
    """Sub-intent labels returned by the storage classifier."""

    GENERAL_INFORMATION = "GeneralInformation"
    MULTIPLE_INTENTS = "MultipleIntents"
    UNCLEAR = "Unclear"
    STORAGE_ACCOUNTS = "StorageAccounts"
    STORAGE_ACCOUNT = "StorageAccount"
    OTHER = "Other"


# Intents answered by the general router rather than a domain router
GENERAL_INTENTS = frozenset(
    intent.value
    for intent in (
        Intent.AZURE,
        Intent.MULTIPLE_INTENTS,
        Intent.UNCLEAR,
        Intent.OTHER,
        Intent.INFORMATION,
        Intent.ABILITY,
    )
)


@dataclass(frozen=True)
class ChatTurn:
    """A single exchange between the user and the assistant.

    Turns are immutable; use ``dataclasses.replace`` to derive a copy
    with merged token counts or a different ``persist`` flag.

    Attributes:
        question: The (possibly rephrased) question sent to the model
        answer: Answer text, or a single fragment when streaming
        intent: Intent label (plugin) that produced the answer
        function: Sub-function label within the intent
        original_question: The raw user input, before rephrasing
        prompt_tokens: Prompt tokens spent on this turn
        completion_tokens: Completion tokens spent on this turn
        persist: Whether the turn belongs in chat history
        id: Unique turn identifier
        created_at: When the turn was created (UTC)
    """

    question: str
    answer: str
    intent: str | None = None
    function: str | None = None
    original_question: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    persist: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, Any]:
        """Convert turn to a dictionary for storage or prompt rendering."""
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "intent": self.intent,
            "function": self.function,
            "original_question": self.original_question,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "persist": self.persist,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatTurn":
        created_at = data.get("created_at")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            question=data.get("question", ""),
            answer=data.get("answer", ""),
            intent=data.get("intent"),
            function=data.get("function"),
            original_question=data.get("original_question"),
            prompt_tokens=data.get("prompt_tokens", 0),
            completion_tokens=data.get("completion_tokens", 0),
            persist=data.get("persist", False),
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
        )


@dataclass
class OperationContext:
    """Correlation record for one logical operation.

    Contexts form a tree: a child created with :meth:`child` carries the
    parent's operation id and user id forward.

    Attributes:
        operation_name: Name of the operation, e.g. "StorageRouter:answer"
        message: Free-text description of the operation
        parent_operation_id: Operation id of the parent (if any)
        user_id: Identifier of the user (doubles as the session key)
        operation_id: Unique identifier for this operation
        start_time: When the operation started
        end_time: When the operation finished (set by the logger)
        metadata: Additional key/value data
    """

    operation_name: str
    message: str = ""
    parent_operation_id: str | None = None
    user_id: str | None = None
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=_utcnow)
    end_time: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def child(self, operation_name: str, message: str = "") -> "OperationContext":
        """Create a nested context for a sub-operation."""
        return OperationContext(
            operation_name=operation_name,
            message=message,
            parent_operation_id=self.operation_id,
            user_id=self.user_id,
        )

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds (0 until the operation has ended)."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000


@dataclass
class StreamingState:
    """Mutable accumulator threaded through one streaming exchange.

    Router stages that make a preliminary, non-streamed model call
    (classification, entity extraction) add its token counts here before
    the streaming call starts. The aggregator folds the totals into the
    terminal turn.

    Attributes:
        user_input: The original user input
        prompt_tokens: Prompt tokens spent by preliminary calls
        completion_tokens: Completion tokens spent by preliminary calls
        operation_context: Context of the exchange that owns this state
    """

    user_input: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    operation_context: OperationContext | None = None

    def add_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens


@dataclass
class Completion:
    """Buffered completion returned by the language model gateway."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class CompletionChunk:
    """One element of a streamed completion.

    Attributes:
        text: Text fragment (may be empty on the final chunk)
        prompt_tokens: Prompt tokens (only set on the final chunk)
        completion_tokens: Completion tokens (only set on the final chunk)
        is_final: True on the single end-of-stream chunk
    """

    text: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    is_final: bool = False


@dataclass(frozen=True)
class Subscription:
    """An Azure subscription the signed-in identity can access."""

    id: str
    name: str
    state: str | None = None


@dataclass
class ChatSession:
    """One continuous interaction scope.

    A session owns one chat history (keyed by ``session_key``) and one
    selected subscription.
    """

    session_key: str
    subscription: Subscription | None = None
    streaming: bool = True

    @property
    def subscription_id(self) -> str | None:
        return self.subscription.id if self.subscription else None


@dataclass
class ExchangeOutcome:
    """Final record of one user question.

    Attributes:
        turn: The final chat turn (None when the exchange failed)
        prompt_tokens: Prompt tokens across every call of the exchange
        completion_tokens: Completion tokens across every call of the exchange
        success: Whether the exchange completed
        status_code: HTTP-style status of the failure (if any)
    """

    turn: ChatTurn | None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    success: bool = True
    status_code: int = 200
