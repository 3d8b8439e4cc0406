"""Streaming aggregation.

StreamingAggregator turns the gateway's chunk stream into the streaming
contract the routers expose:

- every text fragment is relayed at once as a non-terminal Success
- the gateway's final chunk becomes exactly one terminal Success whose
  turn carries the whole answer and the token counts of every call made
  for the exchange; only that turn is appended to chat history
- a failure while streaming becomes a single terminal Failure and
  nothing is persisted
"""

import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from src.core.logger import OperationLogger
from src.core.models import ChatTurn, CompletionChunk, OperationContext, StreamingState
from src.core.results import OperationResult, Success, failure_from_exception
from src.infrastructure.history import HistoryStore

logger = logging.getLogger(__name__)


class StreamingAggregator:
    """Relay streamed fragments and persist the terminal turn.

    Args:
        history_store: Where terminal turns are appended
        operation_logger: Logger for failures raised while streaming
    """

    def __init__(
        self,
        history_store: HistoryStore,
        operation_logger: OperationLogger | None = None,
    ):
        self.history_store = history_store
        self.operation_logger = operation_logger

    async def aggregate(
        self,
        chunks: AsyncIterator[CompletionChunk],
        question: str,
        intent: str,
        function: str,
        state: StreamingState,
        context: OperationContext,
    ) -> AsyncIterator[OperationResult]:
        """Relay a gateway stream.

        Args:
            chunks: Chunk stream from ``LanguageModelGateway.complete_streaming``
            question: Question the stream answers
            intent: Intent label recorded on the turns
            function: Function label recorded on the turns
            state: Token counts of the calls made before streaming began
            context: Operation context (its user id is the session key)

        Yields:
            Non-terminal Success per fragment, then one terminal result
        """
        parts: list[str] = []
        try:
            async with aclosing(chunks) as stream:
                async for chunk in stream:
                    if chunk.text:
                        parts.append(chunk.text)
                        yield Success(
                            item=ChatTurn(
                                question=question,
                                answer=chunk.text,
                                intent=intent,
                                function=function,
                            )
                        )

                    if chunk.is_final:
                        yield await self._finish(
                            question, intent, function, parts, chunk, state, context
                        )
                        return

            # The gateway ended without a final chunk; close the stream ourselves.
            logger.warning(f"Stream for {intent}/{function} ended without a final chunk")
            yield await self._finish(
                question, intent, function, parts, CompletionChunk(is_final=True), state, context
            )

        except Exception as e:
            yield failure_from_exception(e, self.operation_logger, context, is_final=True)

    async def _finish(
        self,
        question: str,
        intent: str,
        function: str,
        parts: list[str],
        final_chunk: CompletionChunk,
        state: StreamingState,
        context: OperationContext,
    ) -> Success:
        turn = ChatTurn(
            question=question,
            answer="".join(parts),
            intent=intent,
            function=function,
            prompt_tokens=final_chunk.prompt_tokens + state.prompt_tokens,
            completion_tokens=final_chunk.completion_tokens + state.completion_tokens,
            persist=True,
        )
        await self.history_store.add(turn, context.user_id)
        return Success(item=turn, is_final=True)

    async def canned(
        self,
        turn: ChatTurn,
        state: StreamingState,
        context: OperationContext,
    ) -> AsyncIterator[OperationResult]:
        """Emit a canned turn under the streaming contract.

        Yields a non-terminal echo of the message for display, then a
        terminal copy carrying the same message plus the token counts of
        the calls already made. The terminal copy is persisted when the
        turn asks for it.
        """
        yield Success(item=turn)

        final_turn = dataclasses.replace(
            turn,
            prompt_tokens=turn.prompt_tokens + state.prompt_tokens,
            completion_tokens=turn.completion_tokens + state.completion_tokens,
        )
        if final_turn.persist:
            await self.history_store.add(final_turn, context.user_id)
        yield Success(item=final_turn, is_final=True)
