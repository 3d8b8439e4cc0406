"""Azure Resource Graph backed resource directories.

This module provides the storage account and subscription lookups used
by the storage router and the console, plus the YAML rendering that
turns resource records into model context.
"""

import logging
from typing import Any, Protocol

import yaml
from azure.core.exceptions import AzureError, HttpResponseError
from azure.identity.aio import DefaultAzureCredential
from azure.mgmt.resourcegraph.aio import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.core.exceptions import DirectoryError
from src.core.logger import OperationLogger
from src.core.models import OperationContext, Subscription

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "-------------------"


class StorageDirectory(Protocol):
    """Storage account lookups consumed by the storage router."""

    async def list_storage_accounts(
        self, subscription_id: str | None, context: OperationContext | None = None
    ) -> list[dict[str, Any]]: ...

    async def get_storage_account(
        self, subscription_id: str | None, name: str, context: OperationContext | None = None
    ) -> dict[str, Any] | None: ...


class SubscriptionDirectory(Protocol):
    """Subscription listing consumed by the orchestrator."""

    async def list_subscriptions(
        self, context: OperationContext | None = None
    ) -> list[Subscription]: ...


def record_to_yaml(record: dict[str, Any]) -> str:
    """Render one resource record as a YAML document."""
    return yaml.safe_dump(record, default_flow_style=False, sort_keys=False, allow_unicode=True)


def records_to_context(records: list[dict[str, Any]]) -> str:
    """Render resource records as model context.

    Each record becomes a YAML document followed by a separator line.
    """
    return "".join(f"{record_to_yaml(record)}{RECORD_SEPARATOR}\n" for record in records)


def _scope(subscription_id: str | None) -> list[str] | None:
    """Subscriptions to query; None queries every visible subscription."""
    return [subscription_id] if subscription_id else None


def _escape(value: str) -> str:
    return value.replace("'", "''")


def _is_transient(error: BaseException) -> bool:
    """Retry Azure errors except client errors other than throttling."""
    if isinstance(error, HttpResponseError) and error.status_code:
        return error.status_code == 429 or error.status_code >= 500
    return isinstance(error, AzureError)


class ResourceGraphDirectory:
    """Resource directory backed by Azure Resource Graph.

    Queries are scoped to one subscription, paginated, and retried with
    exponential backoff. Transport and permission failures are raised
    as DirectoryError; a storage account that does not exist is None.

    Example:
        async with ResourceGraphDirectory() as directory:
            accounts = await directory.list_storage_accounts("sub-123")
    """

    STORAGE_ACCOUNTS_QUERY = "Resources | where type =~ 'Microsoft.Storage/storageAccounts'"

    SUBSCRIPTIONS_QUERY = """
    ResourceContainers
    | where type == 'microsoft.resources/subscriptions'
    | project subscriptionId, name, properties
    | order by name asc
    """

    def __init__(
        self,
        credential: Any | None = None,
        page_size: int = 1000,
        max_retries: int = 3,
        operation_logger: OperationLogger | None = None,
    ):
        """Initialize the directory.

        Args:
            credential: Azure credential for authentication. Uses
                DefaultAzureCredential if not provided.
            page_size: Number of records to fetch per page (max 1000)
            max_retries: Maximum number of retry attempts for failed requests
            operation_logger: Logger for operations and failures
        """
        self.credential = credential or DefaultAzureCredential()
        self.page_size = min(page_size, 1000)  # Azure max is 1000
        self.max_retries = max_retries
        self.operation_logger = operation_logger or OperationLogger()
        self._client: ResourceGraphClient | None = None

    async def __aenter__(self) -> "ResourceGraphDirectory":
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def _ensure_client(self) -> ResourceGraphClient:
        if self._client is None:
            self._client = ResourceGraphClient(self.credential)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
        await self.credential.close()

    @staticmethod
    def _context(
        name: str, message: str, parent: OperationContext | None
    ) -> OperationContext:
        if parent:
            return parent.child(name, message)
        return OperationContext(operation_name=name, message=message)

    async def list_storage_accounts(
        self, subscription_id: str, context: OperationContext | None = None
    ) -> list[dict[str, Any]]:
        """List the storage accounts in a subscription.

        Raises:
            DirectoryError: If the query fails after all retries
        """
        op = self._context(
            "ResourceGraphDirectory:list_storage_accounts",
            f"List storage accounts. Subscription id: {subscription_id}",
            context,
        )
        try:
            return await self.query(self.STORAGE_ACCOUNTS_QUERY, _scope(subscription_id))
        except Exception as e:
            self.operation_logger.log_exception(e, op)
            raise self._to_directory_error(
                e,
                f"An error occurred while listing storage accounts in \"{subscription_id}\" subscription",
            ) from e
        finally:
            self.operation_logger.log_operation(op)

    async def get_storage_account(
        self, subscription_id: str, name: str, context: OperationContext | None = None
    ) -> dict[str, Any] | None:
        """Get one storage account by name (case-insensitive).

        Returns:
            The storage account record, or None if it does not exist

        Raises:
            DirectoryError: If the query fails for any reason other than not found
        """
        op = self._context(
            "ResourceGraphDirectory:get_storage_account",
            f"Get storage account details. Subscription id: {subscription_id}. Storage account: {name}.",
            context,
        )
        query = f"{self.STORAGE_ACCOUNTS_QUERY} and name =~ '{_escape(name)}'"
        try:
            records = await self.query(query, _scope(subscription_id))
            return records[0] if records else None
        except Exception as e:
            self.operation_logger.log_exception(e, op)
            error = self._to_directory_error(
                e,
                f"An error occurred while getting details for \"{name}\" storage account "
                f"in \"{subscription_id}\" subscription",
            )
            if error.status_code == 404:
                return None
            raise error from e
        finally:
            self.operation_logger.log_operation(op)

    async def list_subscriptions(
        self, context: OperationContext | None = None
    ) -> list[Subscription]:
        """List the subscriptions the signed-in identity can access.

        Raises:
            DirectoryError: If the query fails after all retries
        """
        op = self._context("ResourceGraphDirectory:list_subscriptions", "List subscriptions", context)
        try:
            rows = await self.query(self.SUBSCRIPTIONS_QUERY)
            return [
                Subscription(
                    id=row.get("subscriptionId"),
                    name=row.get("name"),
                    state=(row.get("properties") or {}).get("state"),
                )
                for row in rows
            ]
        except Exception as e:
            self.operation_logger.log_exception(e, op)
            raise self._to_directory_error(
                e, "An error occurred while listing subscriptions"
            ) from e
        finally:
            self.operation_logger.log_operation(op)

    async def query(
        self, query: str, subscription_ids: list[str] | None = None
    ) -> list[dict[str, Any]]:
        """Run a Resource Graph query and collect every page.

        Args:
            query: Kusto query
            subscription_ids: Subscriptions to scope the query to (all if None)

        Returns:
            List of result rows
        """
        rows: list[dict[str, Any]] = []
        skip_token = None
        page_count = 0

        while True:
            request = QueryRequest(
                subscriptions=subscription_ids or None,
                query=query,
                options=QueryRequestOptions(top=self.page_size, skip_token=skip_token),
            )
            response = await self._execute_query_with_retry(request)
            rows.extend(response.data)

            page_count += 1
            logger.debug(f"Fetched page {page_count} with {len(response.data)} rows")

            skip_token = response.skip_token
            if not skip_token:
                break

        return rows

    async def _execute_query_with_retry(self, request: QueryRequest) -> Any:
        """Execute a Resource Graph query with exponential backoff retry."""
        client = self._ensure_client()
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            reraise=True,
        ):
            with attempt:
                logger.debug(
                    f"Executing Resource Graph query (attempt {attempt.retry_state.attempt_number})"
                )
                return await client.resources(request)

    @staticmethod
    def _to_directory_error(error: Exception, message: str) -> DirectoryError:
        if isinstance(error, DirectoryError):
            return error
        status_code = 500
        if isinstance(error, HttpResponseError) and error.status_code:
            status_code = error.status_code
        return DirectoryError(f"{message}: {error}", status_code=status_code)
