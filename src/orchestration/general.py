"""General router: rephrasing, top-level intent and general Azure questions."""

import logging
from collections.abc import Sequence
from types import MappingProxyType

from src.core.exceptions import UnsupportedIntentError
from src.core.logger import OperationLogger
from src.core.models import ChatTurn, Intent, OperationContext, StreamingState
from src.core.results import OperationResult, Success, failure_from_exception
from src.infrastructure.gateway import LanguageModelGateway
from src.infrastructure.history import HistoryStore

from .base import BaseRouter, ModelCall
from .grounding import GroundingPolicy

logger = logging.getLogger(__name__)

REPHRASE_FUNCTION = "Rephrase"


class GeneralRouter(BaseRouter):
    """Router for questions that are not about a specific Azure service.

    Azure and Information intents are answered by the model; Ability,
    MultipleIntents, Unclear and Other get a canned answer that is not
    kept in chat history. Any other label falls back to the Other answer.
    """

    name = "General"
    plugin = "General"

    LLM_INTENTS = frozenset({Intent.AZURE.value, Intent.INFORMATION.value})

    def __init__(
        self,
        gateway: LanguageModelGateway,
        history_store: HistoryStore,
        grounding: GroundingPolicy | None = None,
        operation_logger: OperationLogger | None = None,
    ):
        super().__init__(gateway, history_store, grounding, operation_logger)
        self.messages = MappingProxyType(
            {
                Intent.ABILITY.value: "I can help you with your questions about Azure.",
                Intent.MULTIPLE_INTENTS.value: (
                    "My apologies, but it seems that you are asking too many things in a "
                    "single question. Can you please ask one question at a time?"
                ),
                Intent.UNCLEAR.value: (
                    "My apologies, but I am not sure I understand the question. "
                    "Can you please provide more details?"
                ),
                Intent.OTHER.value: (
                    "My apologies, but it seems the question is not related to Azure "
                    "(I may be wrong though). Can you please clarify the question or ask "
                    "me a question related to Azure."
                ),
            }
        )

    async def rephrase(
        self,
        question: str,
        history: Sequence[ChatTurn] | None,
        context: OperationContext | None = None,
    ) -> OperationResult:
        """Rewrite a question so it stands on its own.

        The turn's answer is the rephrased question; it is never persisted.
        """
        op = self._operation("rephrase", f"Rephrase question. Question: {question}", context)
        try:
            completion = await self._complete(
                question, REPHRASE_FUNCTION, self.default_arguments(history), op
            )
            turn = ChatTurn(
                question=question,
                answer=completion.text.strip() or question,
                intent=self.name,
                function=REPHRASE_FUNCTION,
                original_question=question,
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
            )
            return Success(item=turn)
        except Exception as e:
            return failure_from_exception(e, self.operation_logger, op)
        finally:
            self.operation_logger.log_operation(op)

    def canned_message(self, intent: str) -> str:
        """Canned answer for an intent.

        Raises:
            UnsupportedIntentError: If the intent has no canned answer
        """
        try:
            return self.messages[intent]
        except KeyError:
            raise UnsupportedIntentError(intent) from None

    async def _plan(
        self,
        question: str,
        intent: str,
        history: list[ChatTurn],
        state: StreamingState,
        context: OperationContext,
        subscription_id: str | None,
    ) -> ChatTurn | ModelCall:
        if intent in self.LLM_INTENTS:
            return ModelCall(intent=intent, function=intent, arguments=self.default_arguments(history))

        try:
            message = self.canned_message(intent)
        except UnsupportedIntentError as e:
            logger.info(f"{e}; answering as {Intent.OTHER.value}")
            message = self.messages[Intent.OTHER.value]

        return ChatTurn(question=question, answer=message, intent=intent)
