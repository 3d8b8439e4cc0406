"""Base class for intent routers.

A router answers questions for one intent domain. Every public
operation runs inside its own OperationContext, catches every exception
at the router boundary and returns OperationResults.

Answering is split in two steps so the buffered and the streaming path
stay equivalent:

1. ``_plan`` runs the classification, entity extraction and data fetch
   steps, adding their token counts to a StreamingState, and returns
   either a canned ChatTurn or a ModelCall describing the final call.
2. ``answer`` executes the ModelCall with a buffered completion;
   ``stream_answer`` executes it with a streaming completion through the
   StreamingAggregator.
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from src.core.logger import OperationLogger
from src.core.models import ChatTurn, Completion, OperationContext, StreamingState
from src.core.results import OperationResult, Success, failure_from_exception
from src.infrastructure.gateway import LanguageModelGateway
from src.infrastructure.history import HistoryStore

from .grounding import GroundingPolicy, HistoryFilter
from .streaming import StreamingAggregator

logger = logging.getLogger(__name__)

INTENT_FUNCTION = "Intent"


@dataclass
class ModelCall:
    """The final model call of an answer.

    Attributes:
        intent: Intent label recorded on the resulting turn
        function: Prompt function executed by the gateway
        arguments: Argument bag for the call
    """

    intent: str
    function: str
    arguments: dict[str, Any]


def normalize_label(text: str) -> str:
    """Clean a label returned by a classification call."""
    return text.strip().strip("\"'`").strip().rstrip(".").strip()


class BaseRouter(ABC):
    """Shared machinery for the general and domain routers.

    Attributes:
        name: Intent name the router is registered under
        plugin: Prompt plugin used for the router's model calls
    """

    name: str = ""
    plugin: str = ""

    def __init__(
        self,
        gateway: LanguageModelGateway,
        history_store: HistoryStore,
        grounding: GroundingPolicy | None = None,
        operation_logger: OperationLogger | None = None,
    ):
        self.gateway = gateway
        self.history_store = history_store
        self.grounding = grounding or GroundingPolicy()
        self.operation_logger = operation_logger or OperationLogger()
        self.aggregator = StreamingAggregator(history_store, self.operation_logger)

    def _operation(
        self, operation: str, message: str, parent: OperationContext | None
    ) -> OperationContext:
        name = f"{type(self).__name__}:{operation}"
        if parent:
            return parent.child(name, message)
        return OperationContext(operation_name=name, message=message)

    def history_filter(self) -> HistoryFilter | None:
        """Predicate restricting which history turns reach the model."""
        return None

    def default_arguments(self, history: Sequence[ChatTurn] | None) -> dict[str, Any]:
        return self.grounding.default_arguments(history, filter=self.history_filter())

    async def _complete(
        self,
        question: str,
        function: str,
        arguments: dict[str, Any],
        context: OperationContext,
    ) -> Completion:
        return await self.gateway.complete(question, self.plugin, function, arguments, context)

    async def _classify(
        self,
        question: str,
        history: Sequence[ChatTurn] | None,
        context: OperationContext,
    ) -> Completion:
        return await self._complete(
            question, INTENT_FUNCTION, self.default_arguments(history), context
        )

    async def classify_intent(
        self,
        question: str,
        history: Sequence[ChatTurn] | None,
        context: OperationContext | None = None,
    ) -> OperationResult:
        """Classify a question; the turn's answer is the intent label.

        The turn is never persisted.
        """
        op = self._operation("classify_intent", f"Get intent. Question: {question}", context)
        try:
            completion = await self._classify(question, history, op)
            turn = ChatTurn(
                question=question,
                answer=normalize_label(completion.text),
                intent=self.name,
                function=INTENT_FUNCTION,
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
            )
            return Success(item=turn)
        except Exception as e:
            return failure_from_exception(e, self.operation_logger, op)
        finally:
            self.operation_logger.log_operation(op)

    @abstractmethod
    async def _plan(
        self,
        question: str,
        intent: str,
        history: list[ChatTurn],
        state: StreamingState,
        context: OperationContext,
        subscription_id: str | None,
    ) -> ChatTurn | ModelCall:
        """Run the preliminary steps of an answer.

        Token counts of preliminary model calls are added to ``state``.

        Returns:
            A canned turn, or the final model call to make
        """

    async def answer(
        self,
        question: str,
        intent: str,
        history: Sequence[ChatTurn] | None,
        context: OperationContext | None = None,
        subscription_id: str | None = None,
    ) -> OperationResult:
        """Answer a question and return the whole turn.

        Persisted turns are appended to chat history before returning.
        """
        op = self._operation(
            "answer", f"Get response. Question: {question}; Intent: {intent}.", context
        )
        state = StreamingState(user_input=question, operation_context=op)
        try:
            plan = await self._plan(question, intent, list(history or []), state, op, subscription_id)

            if isinstance(plan, ModelCall):
                completion = await self._complete(question, plan.function, plan.arguments, op)
                turn = ChatTurn(
                    question=question,
                    answer=completion.text,
                    intent=plan.intent,
                    function=plan.function,
                    prompt_tokens=completion.prompt_tokens + state.prompt_tokens,
                    completion_tokens=completion.completion_tokens + state.completion_tokens,
                    persist=True,
                )
            else:
                turn = dataclasses.replace(
                    plan,
                    prompt_tokens=plan.prompt_tokens + state.prompt_tokens,
                    completion_tokens=plan.completion_tokens + state.completion_tokens,
                )

            if turn.persist:
                await self.history_store.add(turn, op.user_id)
            return Success(item=turn)

        except Exception as e:
            return failure_from_exception(e, self.operation_logger, op)
        finally:
            self.operation_logger.log_operation(op)

    async def stream_answer(
        self,
        question: str,
        intent: str,
        history: Sequence[ChatTurn] | None,
        state: StreamingState | None = None,
        context: OperationContext | None = None,
        subscription_id: str | None = None,
    ) -> AsyncIterator[OperationResult]:
        """Answer a question as a stream of results.

        Yields non-terminal results for display, then exactly one
        terminal result (``is_final=True``).
        """
        op = self._operation(
            "stream_answer", f"Get response. Question: {question}; Intent: {intent}.", context
        )
        if state is None:
            state = StreamingState(user_input=question, operation_context=op)
        try:
            plan = await self._plan(question, intent, list(history or []), state, op, subscription_id)

            if isinstance(plan, ModelCall):
                chunks = self.gateway.complete_streaming(
                    question, self.plugin, plan.function, plan.arguments, op
                )
                results = self.aggregator.aggregate(
                    chunks, question, plan.intent, plan.function, state, op
                )
            else:
                results = self.aggregator.canned(plan, state, op)

            async with aclosing(results) as stream:
                async for result in stream:
                    yield result

        except Exception as e:
            yield failure_from_exception(e, self.operation_logger, op, is_final=True)
        finally:
            self.operation_logger.log_operation(op)
