"""Storage router: questions about Azure Storage and storage accounts."""

import logging
from types import MappingProxyType

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from src.core.exceptions import EntityExtractionAmbiguousError, UnsupportedIntentError
from src.core.logger import OperationLogger
from src.core.models import ChatTurn, Intent, OperationContext, StorageIntent, StreamingState
from src.infrastructure.gateway import LanguageModelGateway
from src.infrastructure.history import HistoryStore
from src.infrastructure.resources import StorageDirectory, record_to_yaml, records_to_context

from .base import BaseRouter, ModelCall, normalize_label
from .grounding import CONTEXT_ARGUMENT, GroundingPolicy, HistoryFilter

logger = logging.getLogger(__name__)

ENTITY_RECOGNITION_FUNCTION = "EntityRecognition"

UNABLE_TO_ANSWER = "UnableToAnswer"
NO_STORAGE_ACCOUNTS = "NoStorageAccounts"
UNABLE_TO_EXTRACT_ACCOUNT_NAME = "UnableToExtractStorageAccountName"
UNABLE_TO_FIND_ACCOUNT = "UnableToFindStorageAccountDetails"


class StorageEntities(BaseModel):
    """Storage entities named in a question.

    Accepts both snake_case and PascalCase keys from the model.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    storage_account: str | None = Field(
        default=None, validation_alias=AliasChoices("storage_account", "StorageAccount")
    )
    blob_container: str | None = Field(
        default=None, validation_alias=AliasChoices("blob_container", "BlobContainer")
    )
    queue: str | None = Field(default=None, validation_alias=AliasChoices("queue", "Queue"))
    table: str | None = Field(default=None, validation_alias=AliasChoices("table", "Table"))
    file_share: str | None = Field(
        default=None, validation_alias=AliasChoices("file_share", "FileShare")
    )


def parse_storage_entities(response: str) -> StorageEntities:
    """Parse the entity recognition response.

    Raises:
        EntityExtractionAmbiguousError: If the response is not valid JSON or
            names no storage account
    """
    text = response.strip()
    # Models sometimes wrap JSON in a markdown fence
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]

    try:
        entities = StorageEntities.model_validate_json(text)
    except ValidationError as e:
        raise EntityExtractionAmbiguousError(response, reason="invalid JSON") from e

    if not entities.storage_account or not entities.storage_account.strip():
        raise EntityExtractionAmbiguousError(response)

    entities.storage_account = entities.storage_account.strip()
    return entities


class StorageRouter(BaseRouter):
    """Router for Azure Storage questions.

    Flow:
    - classify the question into a storage sub-intent
    - GeneralInformation: answered by the model directly
    - StorageAccounts: list the subscription's storage accounts and pass
      them to the model as YAML context
    - StorageAccount: extract the account name with the model, fetch the
      account and pass it to the model as YAML context

    Canned answers (no accounts, name not extracted, account not found,
    unsupported sub-intent) are kept in chat history like model answers.
    Token counts of every call are folded into the returned turn.
    """

    name = Intent.STORAGE.value
    plugin = Intent.STORAGE.value

    def __init__(
        self,
        gateway: LanguageModelGateway,
        history_store: HistoryStore,
        directory: StorageDirectory,
        grounding: GroundingPolicy | None = None,
        operation_logger: OperationLogger | None = None,
    ):
        super().__init__(gateway, history_store, grounding, operation_logger)
        self.directory = directory
        self.messages = MappingProxyType(
            {
                UNABLE_TO_ANSWER: (
                    "My apologies, but based on the information available to me, I am unable "
                    "to answer your question. Currently I can only answer questions about "
                    "properties of storage accounts (e.g. how many storage accounts are "
                    "without tags?) or that of a single storage account (e.g. where is xyz "
                    "storage account located?)"
                ),
                NO_STORAGE_ACCOUNTS: (
                    "My apologies, but I am not able to find any storage accounts that you "
                    "have access to in the selected subscription. Please choose another "
                    "subscription or ask another question."
                ),
                UNABLE_TO_EXTRACT_ACCOUNT_NAME: (
                    "My apologies, but I am not able to figure out the name of the storage "
                    "account from the question. Please ask the question again and have the "
                    "name of the storage account explicitly mentioned in the question."
                ),
                UNABLE_TO_FIND_ACCOUNT: (
                    "My apologies, but I am not able to get the details about \"{name}\" "
                    "storage account. Please make sure that the storage account exists in the "
                    "selected subscription and you have permissions to access it."
                ),
            }
        )

    def history_filter(self) -> HistoryFilter:
        # Storage turns plus cross-cutting informational turns
        return lambda turn: turn.intent in (self.name, Intent.INFORMATION.value)

    def _canned(self, question: str, function: str, key: str, **params: str) -> ChatTurn:
        return ChatTurn(
            question=question,
            answer=self.messages[key].format(**params),
            intent=self.name,
            function=function,
            persist=True,
        )

    async def _plan(
        self,
        question: str,
        intent: str,
        history: list[ChatTurn],
        state: StreamingState,
        context: OperationContext,
        subscription_id: str | None,
    ) -> ChatTurn | ModelCall:
        classification = await self._classify(question, history, context)
        state.add_usage(classification.prompt_tokens, classification.completion_tokens)
        sub_intent = normalize_label(classification.text)
        logger.debug(f"Storage sub-intent: {sub_intent}")

        try:
            if sub_intent == StorageIntent.GENERAL_INFORMATION.value:
                return ModelCall(
                    intent=self.name,
                    function=StorageIntent.GENERAL_INFORMATION.value,
                    arguments=self.default_arguments(history),
                )
            if sub_intent == StorageIntent.STORAGE_ACCOUNTS.value:
                return await self._plan_storage_accounts(question, history, context, subscription_id)
            if sub_intent == StorageIntent.STORAGE_ACCOUNT.value:
                return await self._plan_storage_account(
                    question, history, state, context, subscription_id
                )
            raise UnsupportedIntentError(sub_intent)

        except UnsupportedIntentError as e:
            logger.info(f"{e}; answering with {UNABLE_TO_ANSWER}")
            return self._canned(question, sub_intent, UNABLE_TO_ANSWER)

    async def _plan_storage_accounts(
        self,
        question: str,
        history: list[ChatTurn],
        context: OperationContext,
        subscription_id: str | None,
    ) -> ChatTurn | ModelCall:
        accounts = await self.directory.list_storage_accounts(subscription_id, context)
        if not accounts:
            return self._canned(
                question, StorageIntent.STORAGE_ACCOUNTS.value, NO_STORAGE_ACCOUNTS
            )

        arguments = self.default_arguments(history)
        arguments[CONTEXT_ARGUMENT] = records_to_context(accounts)
        return ModelCall(
            intent=self.name, function=StorageIntent.STORAGE_ACCOUNTS.value, arguments=arguments
        )

    async def _plan_storage_account(
        self,
        question: str,
        history: list[ChatTurn],
        state: StreamingState,
        context: OperationContext,
        subscription_id: str | None,
    ) -> ChatTurn | ModelCall:
        extraction = await self._complete(
            question, ENTITY_RECOGNITION_FUNCTION, self.default_arguments(history), context
        )
        state.add_usage(extraction.prompt_tokens, extraction.completion_tokens)

        try:
            entities = parse_storage_entities(extraction.text)
        except EntityExtractionAmbiguousError as e:
            logger.info(f"{e}: {e.response!r}")
            return self._canned(
                question, StorageIntent.STORAGE_ACCOUNT.value, UNABLE_TO_EXTRACT_ACCOUNT_NAME
            )

        account = await self.directory.get_storage_account(
            subscription_id, entities.storage_account, context
        )
        if account is None:
            return self._canned(
                question,
                StorageIntent.STORAGE_ACCOUNT.value,
                UNABLE_TO_FIND_ACCOUNT,
                name=entities.storage_account,
            )

        arguments = self.default_arguments(history)
        arguments[CONTEXT_ARGUMENT] = record_to_yaml(account)
        return ModelCall(
            intent=self.name, function=StorageIntent.STORAGE_ACCOUNT.value, arguments=arguments
        )
