"""Conversation orchestration.

ConversationOrchestrator drives one question through the pipeline:

1. rephrase the question with the general router so it stands alone
2. classify its top-level intent with the general router
3. pick the router for the intent (general intents and unregistered
   labels go to the general router)
4. answer it, buffered or streaming, and report the token totals of
   every call made for the exchange

It also owns the session commands offered by the console: clearing chat
history, changing the subscription, toggling the response mode and
listing subscriptions.
"""

import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from src.core.logger import OperationLogger
from src.core.models import (
    ChatSession,
    ChatTurn,
    ExchangeOutcome,
    GENERAL_INTENTS,
    Intent,
    OperationContext,
    StreamingState,
    Subscription,
)
from src.core.results import (
    Failure,
    OperationResult,
    Success,
    failure_from_exception,
)
from src.infrastructure.history import HistoryStore
from src.infrastructure.resources import SubscriptionDirectory

from .base import BaseRouter
from .general import GeneralRouter
from .registry import RouterRegistry

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Route user questions to intent routers and relay their answers.

    Example:
        orchestrator = ConversationOrchestrator(general, registry, history)
        session = ChatSession(session_key="console")

        async for item in orchestrator.handle_question(session, "list my storage accounts"):
            if isinstance(item, str):
                print(item, end="")
            else:
                print(f"\\n{item.prompt_tokens}/{item.completion_tokens}")
    """

    def __init__(
        self,
        general_router: GeneralRouter,
        registry: RouterRegistry,
        history_store: HistoryStore,
        subscription_directory: SubscriptionDirectory | None = None,
        operation_logger: OperationLogger | None = None,
    ):
        self.general_router = general_router
        self.registry = registry
        self.history_store = history_store
        self.subscription_directory = subscription_directory
        self.operation_logger = operation_logger or OperationLogger()

    def select_router(self, intent: str) -> tuple[BaseRouter, str]:
        """Pick the router for a top-level intent.

        Returns:
            The router and the intent to pass to it. An intent no router
            handles is answered by the general router as "Other".
        """
        if intent in GENERAL_INTENTS:
            return self.general_router, intent

        router = self.registry.lookup(intent)
        if router is None:
            logger.info(
                f"No router registered for intent {intent!r}; answering as {Intent.OTHER.value}"
            )
            return self.general_router, Intent.OTHER.value
        return router, intent

    async def handle_question(
        self, session: ChatSession, user_input: str
    ) -> AsyncIterator[str | ExchangeOutcome]:
        """Answer one user question.

        Yields answer text (the whole answer when buffered, one fragment at
        a time when streaming) followed by exactly one ExchangeOutcome.
        Never raises; failures produce an outcome with ``success=False``.
        """
        op = OperationContext(
            operation_name="ConversationOrchestrator:handle_question",
            message=f"Handle question. Question: {user_input}",
            user_id=session.session_key,
        )
        prompt_tokens = 0
        completion_tokens = 0

        try:
            history = await self.history_store.list(session.session_key)

            rephrased = await self.general_router.rephrase(user_input, history, op)
            if not rephrased.is_success:
                yield self._failed(rephrased, prompt_tokens, completion_tokens)
                return
            prompt_tokens += rephrased.item.prompt_tokens
            completion_tokens += rephrased.item.completion_tokens
            question = rephrased.item.answer

            classified = await self.general_router.classify_intent(question, history, op)
            if not classified.is_success:
                yield self._failed(classified, prompt_tokens, completion_tokens)
                return
            prompt_tokens += classified.item.prompt_tokens
            completion_tokens += classified.item.completion_tokens

            router, intent = self.select_router(classified.item.answer)
            logger.debug(f"Routing {question!r} to {router.name} with intent {intent}")

            if session.streaming:
                results = self._stream(router, question, intent, history, session, op, user_input)
            else:
                results = self._buffered(router, question, intent, history, session, op)

            final: OperationResult | None = None
            async with aclosing(results) as stream:
                async for item in stream:
                    if isinstance(item, str):
                        yield item
                    else:
                        final = item

            if final is None or not final.is_success:
                yield self._failed(final, prompt_tokens, completion_tokens)
                return

            turn: ChatTurn = dataclasses.replace(final.item, original_question=user_input)
            self.operation_logger.log_chat_turn(turn, op, original_question=user_input)
            yield ExchangeOutcome(
                turn=turn,
                prompt_tokens=prompt_tokens + turn.prompt_tokens,
                completion_tokens=completion_tokens + turn.completion_tokens,
            )

        except Exception as e:
            failure = failure_from_exception(e, self.operation_logger, op, is_final=True)
            yield self._failed(failure, prompt_tokens, completion_tokens)
        finally:
            self.operation_logger.log_operation(op)

    async def _buffered(
        self,
        router: BaseRouter,
        question: str,
        intent: str,
        history: list[ChatTurn],
        session: ChatSession,
        context: OperationContext,
    ) -> AsyncIterator[str | OperationResult]:
        result = await router.answer(
            question, intent, history, context, subscription_id=session.subscription_id
        )
        if result.is_success:
            yield result.item.answer
        yield result

    async def _stream(
        self,
        router: BaseRouter,
        question: str,
        intent: str,
        history: list[ChatTurn],
        session: ChatSession,
        context: OperationContext,
        user_input: str,
    ) -> AsyncIterator[str | OperationResult]:
        state = StreamingState(user_input=user_input, operation_context=context)
        results = router.stream_answer(
            question,
            intent,
            history,
            state=state,
            context=context,
            subscription_id=session.subscription_id,
        )
        async with aclosing(results) as stream:
            async for result in stream:
                if result.is_final:
                    yield result
                    return
                if result.is_success and result.item.answer:
                    yield result.item.answer

    @staticmethod
    def _failed(
        result: OperationResult | None, prompt_tokens: int, completion_tokens: int
    ) -> ExchangeOutcome:
        status_code = result.status_code if result is not None else 500
        if isinstance(result, Failure) and result.error is not None:
            logger.debug(f"Exchange failed with status {status_code}: {result.error}")
        return ExchangeOutcome(
            turn=None,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            success=False,
            status_code=status_code,
        )

    async def clear_history(self, session: ChatSession) -> OperationResult:
        """Drop every persisted turn of a session."""
        op = OperationContext(
            operation_name="ConversationOrchestrator:clear_history",
            message="Clear chat history",
            user_id=session.session_key,
        )
        try:
            await self.history_store.clear(session.session_key)
            return Success()
        except Exception as e:
            return failure_from_exception(e, self.operation_logger, op)
        finally:
            self.operation_logger.log_operation(op)

    async def select_subscription(
        self, session: ChatSession, subscription: Subscription
    ) -> OperationResult:
        """Switch the session to another subscription.

        Chat history is cleared, since earlier answers describe resources
        of the previous subscription.
        """
        previous = session.subscription
        session.subscription = subscription
        if previous is not None and previous.id != subscription.id:
            logger.info(f"Subscription changed from {previous.id} to {subscription.id}")
        result = await self.clear_history(session)
        return Success(item=subscription) if result.is_success else result

    def toggle_streaming(self, session: ChatSession) -> bool:
        """Flip the session between streaming and buffered answers.

        Returns:
            True if the session now streams
        """
        session.streaming = not session.streaming
        return session.streaming

    async def list_subscriptions(self) -> OperationResult:
        """List the subscriptions available to the signed-in identity."""
        op = OperationContext(
            operation_name="ConversationOrchestrator:list_subscriptions",
            message="List subscriptions",
        )
        try:
            if self.subscription_directory is None:
                return Success(item=[])
            subscriptions = await self.subscription_directory.list_subscriptions(op)
            return Success(item=subscriptions)
        except Exception as e:
            return failure_from_exception(e, self.operation_logger, op)
        finally:
            self.operation_logger.log_operation(op)
