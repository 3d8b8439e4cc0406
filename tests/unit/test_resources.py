"""Unit tests for the Resource Graph directory and YAML rendering."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from src.core.exceptions import DirectoryError
from src.core.models import OperationContext
from src.infrastructure.resources import (
    RECORD_SEPARATOR,
    ResourceGraphDirectory,
    _is_transient,
    record_to_yaml,
    records_to_context,
)


@pytest.fixture
def mock_credential():
    """Mock Azure credential."""
    credential = AsyncMock()
    credential.close = AsyncMock()
    return credential


@pytest.fixture
def directory(mock_credential):
    """Create a directory with mocked credential and no backoff."""
    directory = ResourceGraphDirectory(
        credential=mock_credential, page_size=100, operation_logger=MagicMock()
    )
    return directory


def http_error(status_code: int) -> HttpResponseError:
    error = HttpResponseError(message=f"HTTP {status_code}")
    error.status_code = status_code
    return error


def page(rows, skip_token=None):
    response = MagicMock()
    response.data = rows
    response.skip_token = skip_token
    return response


@pytest.fixture
def mock_client():
    """Patch the Resource Graph client class."""
    with patch("src.infrastructure.resources.ResourceGraphClient") as mock_client_class:
        client = AsyncMock()
        client.close = AsyncMock()
        mock_client_class.return_value = client
        yield client


@pytest.fixture(autouse=True)
def no_backoff():
    """Skip tenacity backoff waits."""
    with patch("asyncio.sleep", new=AsyncMock()):
        yield


class TestYamlRendering:
    """Tests for record rendering."""

    def test_record_to_yaml(self, sample_account):
        """Test one record renders as YAML in key order."""
        text = record_to_yaml(sample_account)

        assert yaml.safe_load(text) == sample_account
        assert text.index("id:") < text.index("name:")

    def test_records_to_context(self, sample_account):
        """Test each record is followed by the separator line."""
        context = records_to_context([sample_account, {**sample_account, "name": "abc"}])

        documents = [d for d in context.split(f"{RECORD_SEPARATOR}\n") if d]
        assert len(documents) == 2
        assert yaml.safe_load(documents[1])["name"] == "abc"

    def test_records_to_context_empty(self):
        """Test no records renders nothing."""
        assert records_to_context([]) == ""


class TestIsTransient:
    """Tests for the retry predicate."""

    def test_throttling_and_server_errors(self):
        """Test 429 and 5xx are retried."""
        assert _is_transient(http_error(429))
        assert _is_transient(http_error(503))

    def test_client_errors(self):
        """Test other 4xx errors are not retried."""
        assert not _is_transient(http_error(403))
        assert not _is_transient(http_error(404))

    def test_transport_errors(self):
        """Test transport errors are retried and other errors are not."""
        assert _is_transient(ServiceRequestError("connection reset"))
        assert not _is_transient(ValueError("bad"))


class TestResourceGraphDirectory:
    """Tests for ResourceGraphDirectory."""

    def test_page_size_capped_at_1000(self, mock_credential):
        """Test that page size is capped at Azure's maximum of 1000."""
        directory = ResourceGraphDirectory(credential=mock_credential, page_size=5000)
        assert directory.page_size == 1000

    @pytest.mark.asyncio
    async def test_context_manager(self, directory, mock_client, mock_credential):
        """Test async context manager."""
        async with directory:
            assert directory._client is not None

        mock_client.close.assert_called_once()
        mock_credential.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_list_storage_accounts(self, directory, mock_client, sample_account):
        """Test listing storage accounts scoped to one subscription."""
        mock_client.resources = AsyncMock(return_value=page([sample_account]))

        accounts = await directory.list_storage_accounts("sub-123")

        assert accounts == [sample_account]
        request = mock_client.resources.call_args[0][0]
        assert request.subscriptions == ["sub-123"]
        assert "Microsoft.Storage/storageAccounts" in request.query

    @pytest.mark.asyncio
    async def test_no_subscription_queries_all(self, directory, mock_client, sample_account):
        """Test no subscription leaves the query unscoped."""
        mock_client.resources = AsyncMock(return_value=page([sample_account]))

        await directory.list_storage_accounts(None)
        await directory.get_storage_account(None, "xyz")

        for call in mock_client.resources.call_args_list:
            assert call[0][0].subscriptions is None

    @pytest.mark.asyncio
    async def test_pagination(self, directory, mock_client, sample_account):
        """Test every page is collected."""
        mock_client.resources = AsyncMock(
            side_effect=[
                page([sample_account], skip_token="next"),
                page([{**sample_account, "name": "abc"}]),
            ]
        )

        accounts = await directory.list_storage_accounts("sub-123")

        assert [a["name"] for a in accounts] == ["xyz", "abc"]
        second_request = mock_client.resources.call_args_list[1][0][0]
        assert second_request.options.skip_token == "next"

    @pytest.mark.asyncio
    async def test_get_storage_account(self, directory, mock_client, sample_account):
        """Test a single account is looked up by escaped name."""
        mock_client.resources = AsyncMock(return_value=page([sample_account]))

        account = await directory.get_storage_account("sub-123", "x'yz")

        assert account == sample_account
        request = mock_client.resources.call_args[0][0]
        assert "name =~ 'x''yz'" in request.query

    @pytest.mark.asyncio
    async def test_get_storage_account_missing(self, directory, mock_client):
        """Test a missing account is None."""
        mock_client.resources = AsyncMock(return_value=page([]))

        assert await directory.get_storage_account("sub-123", "missing") is None

    @pytest.mark.asyncio
    async def test_get_storage_account_not_found_error(self, directory, mock_client):
        """Test a 404 from the service is None, not an error."""
        mock_client.resources = AsyncMock(side_effect=http_error(404))

        assert await directory.get_storage_account("sub-123", "missing") is None
        assert mock_client.resources.call_count == 1

    @pytest.mark.asyncio
    async def test_permission_error(self, directory, mock_client):
        """Test permission failures raise DirectoryError with the status."""
        mock_client.resources = AsyncMock(side_effect=http_error(403))

        with pytest.raises(DirectoryError) as exc_info:
            await directory.list_storage_accounts("sub-123")

        assert exc_info.value.status_code == 403
        assert mock_client.resources.call_count == 1
        directory.operation_logger.log_exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_throttling_retried(self, directory, mock_client, sample_account):
        """Test throttled queries are retried."""
        mock_client.resources = AsyncMock(
            side_effect=[http_error(429), page([sample_account])]
        )

        accounts = await directory.list_storage_accounts("sub-123")

        assert accounts == [sample_account]
        assert mock_client.resources.call_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, directory, mock_client):
        """Test server errors raise DirectoryError after all retries."""
        mock_client.resources = AsyncMock(side_effect=http_error(500))

        with pytest.raises(DirectoryError) as exc_info:
            await directory.list_storage_accounts("sub-123")

        assert exc_info.value.status_code == 500
        assert mock_client.resources.call_count == directory.max_retries

    @pytest.mark.asyncio
    async def test_list_subscriptions(self, directory, mock_client):
        """Test subscriptions are mapped from ResourceContainers rows."""
        mock_client.resources = AsyncMock(
            return_value=page(
                [
                    {"subscriptionId": "sub-1", "name": "Dev", "properties": {"state": "Enabled"}},
                    {"subscriptionId": "sub-2", "name": "Prod", "properties": None},
                ]
            )
        )
        parent = OperationContext(operation_name="ConversationOrchestrator:list_subscriptions")

        subscriptions = await directory.list_subscriptions(parent)

        assert [(s.id, s.name, s.state) for s in subscriptions] == [
            ("sub-1", "Dev", "Enabled"),
            ("sub-2", "Prod", None),
        ]
        request = mock_client.resources.call_args[0][0]
        assert request.subscriptions is None
        assert "ResourceContainers" in request.query
        context = directory.operation_logger.log_operation.call_args[0][0]
        assert context.parent_operation_id == parent.operation_id
