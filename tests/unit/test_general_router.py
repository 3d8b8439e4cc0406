"""Unit tests for GeneralRouter."""

import pytest

from src.core.exceptions import GatewayError, UnsupportedIntentError
from src.core.models import ChatTurn, OperationContext
from src.core.results import Failure
from src.orchestration.base import normalize_label
from src.orchestration.general import GeneralRouter
from src.orchestration.grounding import CHAT_HISTORY_ARGUMENT, GROUNDING_RULES_ARGUMENT


@pytest.fixture
def router(gateway, history, operation_logger):
    """GeneralRouter with scripted collaborators."""
    return GeneralRouter(gateway, history, operation_logger=operation_logger)


class TestRephrase:
    """Tests for rephrase()."""

    @pytest.mark.asyncio
    async def test_rephrase(self, router, gateway):
        """Test the rephrased question is returned with token counts."""
        gateway.script("General", "Rephrase", "Where is the xyz storage account located?", 12, 9)
        history = [ChatTurn(question="Tell me about xyz", answer="xyz is a storage account")]

        result = await router.rephrase("where is it?", history)

        assert result.is_success
        assert result.item.answer == "Where is the xyz storage account located?"
        assert result.item.original_question == "where is it?"
        assert result.item.prompt_tokens == 12
        assert result.item.completion_tokens == 9
        assert result.item.persist is False
        assert gateway.calls[0]["arguments"][CHAT_HISTORY_ARGUMENT] == history

    @pytest.mark.asyncio
    async def test_rephrase_empty_falls_back_to_question(self, router, gateway):
        """Test an empty rephrase keeps the original question."""
        gateway.script("General", "Rephrase", "")

        result = await router.rephrase("What is Azure?", [])

        assert result.item.answer == "What is Azure?"

    @pytest.mark.asyncio
    async def test_rephrase_failure(self, router, gateway):
        """Test a gateway failure becomes a Failure with its status."""
        gateway.script("General", "Rephrase", error=GatewayError("throttled", status_code=429))

        result = await router.rephrase("What is Azure?", [])

        assert isinstance(result, Failure)
        assert result.status_code == 429

    @pytest.mark.asyncio
    async def test_rephrase_logs_operation(self, router, gateway, operation_logger):
        """Test the operation is logged under the parent context."""
        gateway.script("General", "Rephrase", "What is Azure?")
        parent = OperationContext(operation_name="Main:Chat", user_id="u1")

        await router.rephrase("What is Azure?", [], parent)

        context = operation_logger.log_operation.call_args[0][0]
        assert context.operation_name == "GeneralRouter:rephrase"
        assert context.parent_operation_id == parent.operation_id


class TestClassifyIntent:
    """Tests for classify_intent()."""

    @pytest.mark.asyncio
    async def test_label_normalized(self, router, gateway):
        """Test the label is stripped of quotes and punctuation."""
        gateway.script("General", "Intent", ' "Storage." ', 30, 1)

        result = await router.classify_intent("How many storage accounts do I have?", [])

        assert result.item.answer == "Storage"
        assert result.item.prompt_tokens == 30
        assert result.item.persist is False

    def test_normalize_label(self):
        """Test label normalization."""
        assert normalize_label("`Azure`\n") == "Azure"
        assert normalize_label("'Other'.") == "Other"


class TestAnswer:
    """Tests for answer()."""

    @pytest.mark.asyncio
    async def test_azure_question_answered_by_model(self, router, gateway, history):
        """Test Azure questions are answered by the model and persisted."""
        gateway.script("General", "Azure", "Azure is Microsoft's cloud.", 50, 20)

        result = await router.answer("What is Azure?", "Azure", [])

        assert result.is_success
        assert result.item.answer == "Azure is Microsoft's cloud."
        assert result.item.intent == "Azure"
        assert result.item.function == "Azure"
        assert result.item.persist is True
        assert len(history.added) == 1
        assert GROUNDING_RULES_ARGUMENT in gateway.calls[0]["arguments"]

    @pytest.mark.asyncio
    async def test_information_question(self, router, gateway):
        """Test Information questions use the Information function."""
        gateway.script("General", "Information", "Here are more details.")

        result = await router.answer("Tell me more", "Information", [])

        assert result.item.intent == "Information"
        assert gateway.functions_called() == [("General", "Information")]

    @pytest.mark.parametrize(
        "intent,expected",
        [
            ("Ability", "I can help you with your questions about Azure."),
            ("MultipleIntents", "asking too many things"),
            ("Unclear", "not sure I understand the question"),
            ("Other", "not related to Azure"),
        ],
    )
    @pytest.mark.asyncio
    async def test_canned_answers(self, router, gateway, history, intent, expected):
        """Test canned intents make no model call and are not persisted."""
        result = await router.answer("question", intent, [])

        assert result.is_success
        assert expected in result.item.answer
        assert result.item.intent == intent
        assert gateway.calls == []
        assert history.added == []

    @pytest.mark.asyncio
    async def test_unknown_intent_answers_other(self, router, gateway):
        """Test an unknown label gets the Other answer."""
        result = await router.answer("Tell me about CosmosDB", "CosmosDB", [])

        assert result.is_success
        assert result.item.answer == router.messages["Other"]
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_model_failure(self, router, gateway, history):
        """Test a failing model call returns a Failure and persists nothing."""
        gateway.script("General", "Azure", error=GatewayError("server error", status_code=502))

        result = await router.answer("What is Azure?", "Azure", [])

        assert isinstance(result, Failure)
        assert result.status_code == 502
        assert history.added == []

    @pytest.mark.asyncio
    async def test_unexpected_error_logged(self, router, gateway, operation_logger):
        """Test non-request errors are logged once and become 500s."""
        gateway.script("General", "Azure", error=ValueError("bad response"))

        result = await router.answer("What is Azure?", "Azure", [])

        assert result.status_code == 500
        operation_logger.log_exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_history_trimmed(self, router, gateway):
        """Test only the most recent turns reach the model."""
        gateway.script("General", "Azure", "answer")
        history = [ChatTurn(question=f"q{i}", answer=f"a{i}") for i in range(8)]

        await router.answer("What is Azure?", "Azure", history)

        sent = gateway.calls[0]["arguments"][CHAT_HISTORY_ARGUMENT]
        assert [t.question for t in sent] == ["q3", "q4", "q5", "q6", "q7"]


class TestStreamAnswer:
    """Tests for stream_answer()."""

    @pytest.mark.asyncio
    async def test_stream_model_answer(self, router, gateway, history):
        """Test a streamed model answer ends with one persisted terminal turn."""
        gateway.script("General", "Azure", "Azure is a cloud.", 40, 6)

        results = [r async for r in router.stream_answer("What is Azure?", "Azure", [])]

        assert [r.is_final for r in results] == [False, True]
        assert results[-1].item.answer == "Azure is a cloud."
        assert results[-1].item.prompt_tokens == 40
        assert len(history.added) == 1

    @pytest.mark.asyncio
    async def test_stream_canned_answer(self, router, gateway, history):
        """Test canned answers stream without a model call or persistence."""
        results = [r async for r in router.stream_answer("?", "Unclear", [])]

        assert results[-1].is_final
        assert results[-1].item.answer == router.messages["Unclear"]
        assert gateway.calls == []
        assert history.added == []

    @pytest.mark.asyncio
    async def test_stream_failure(self, router, gateway, history):
        """Test a failing stream ends with a terminal Failure."""
        gateway.script("General", "Azure", error=GatewayError("boom"))

        results = [r async for r in router.stream_answer("What is Azure?", "Azure", [])]

        assert len(results) == 1
        assert isinstance(results[0], Failure)
        assert results[0].is_final
        assert history.added == []


class TestCannedMessage:
    """Tests for canned_message()."""

    def test_unknown_intent_raises(self, router):
        """Test labels without a canned answer raise."""
        with pytest.raises(UnsupportedIntentError):
            router.canned_message("Azure")

    def test_messages_read_only(self, router):
        """Test canned messages cannot be changed at runtime."""
        with pytest.raises(TypeError):
            router.messages["Other"] = "changed"
