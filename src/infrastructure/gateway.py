"""Language model gateway backed by Azure OpenAI.

This module provides the buffered and streaming completion calls the
routers use. A call is addressed by a ``(plugin, function)`` pair that
selects the prompt template; the argument bag carries the grounding
rules, the trimmed chat history and (optionally) resource context.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol

import tiktoken
from openai import APIError, AsyncAzureOpenAI, RateLimitError

from src.core.exceptions import GatewayError
from src.core.logger import OperationLogger
from src.core.models import Completion, CompletionChunk, OperationContext

from .prompts import build_messages

logger = logging.getLogger(__name__)


class LanguageModelGateway(Protocol):
    """Buffered and streaming model calls consumed by the routers."""

    async def complete(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: OperationContext | None = None,
    ) -> Completion: ...

    def complete_streaming(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: OperationContext | None = None,
    ) -> AsyncIterator[CompletionChunk]: ...


class AzureOpenAIGateway:
    """Gateway for Azure OpenAI chat completions.

    Handles:
    - Prompt rendering for each model function
    - Response streaming with an explicit final chunk
    - Retry logic with backoff
    - Token counting

    Example:
        gateway = AzureOpenAIGateway(
            azure_endpoint="https://my-openai.openai.azure.com",
            deployment="gpt-4o",
        )

        completion = await gateway.complete("What is Blob Storage?", "Storage", "GeneralInformation")
        print(completion.text, completion.prompt_tokens)
    """

    DEFAULT_MAX_TOKENS = 4096
    DEFAULT_TEMPERATURE = 0.0
    DEFAULT_DEPLOYMENT = "gpt-4o"
    MAX_RETRIES = 3
    RETRY_DELAY_BASE = 1.0

    def __init__(
        self,
        azure_endpoint: str,
        deployment: str | None = None,
        api_key: str | None = None,
        api_version: str = "2024-06-01",
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        operation_logger: OperationLogger | None = None,
    ):
        """Initialize the gateway.

        Args:
            azure_endpoint: Azure OpenAI endpoint URL
            deployment: Chat model deployment name (default: gpt-4o)
            api_key: API key (if None, uses DefaultAzureCredential)
            api_version: Azure OpenAI API version
            model: Underlying model name, used to pick the token encoding
            max_tokens: Maximum tokens in response
            temperature: Response temperature (default 0)
            operation_logger: Logger for operations and failures
        """
        self.deployment = deployment or self.DEFAULT_DEPLOYMENT
        self.model = model or self.deployment
        self.max_tokens = max_tokens or self.DEFAULT_MAX_TOKENS
        self.temperature = temperature if temperature is not None else self.DEFAULT_TEMPERATURE
        self.api_version = api_version
        self.operation_logger = operation_logger or OperationLogger()

        if api_key:
            self.client = AsyncAzureOpenAI(
                azure_endpoint=azure_endpoint,
                api_key=api_key,
                api_version=api_version,
            )
        else:
            # Use Managed Identity / DefaultAzureCredential
            from azure.identity.aio import DefaultAzureCredential, get_bearer_token_provider

            credential = DefaultAzureCredential()
            token_provider = get_bearer_token_provider(
                credential, "https://cognitiveservices.azure.com/.default"
            )
            self.client = AsyncAzureOpenAI(
                azure_endpoint=azure_endpoint,
                azure_ad_token_provider=token_provider,
                api_version=api_version,
            )

    def _context(
        self, name: str, question: str, plugin: str, function: str, parent: OperationContext | None
    ) -> OperationContext:
        message = f"Question: {question}; Plugin: {plugin}; Function: {function}."
        if parent:
            return parent.child(name, message)
        return OperationContext(operation_name=name, message=message)

    def _request(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None,
        stream: bool,
    ) -> dict[str, Any]:
        try:
            messages = build_messages(question, plugin, function, arguments)
        except KeyError as e:
            raise GatewayError(str(e.args[0]) if e.args else str(e)) from e

        kwargs: dict[str, Any] = {
            "model": self.deployment,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": stream,
        }
        if stream:
            kwargs["stream_options"] = {"include_usage": True}
        return kwargs

    @staticmethod
    def _to_gateway_error(error: Exception, message: str) -> GatewayError:
        if isinstance(error, GatewayError):
            return error
        status_code = getattr(error, "status_code", None) or 500
        return GatewayError(f"{message}: {error}", status_code=status_code)

    async def complete(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: OperationContext | None = None,
    ) -> Completion:
        """Execute a model function and return the whole completion.

        Args:
            question: The user's question
            plugin: Plugin (intent) name selecting the prompt
            function: Function name within the plugin
            arguments: Grounding rules, chat history and context
            context: Parent operation context

        Returns:
            Completion with text and token usage

        Raises:
            GatewayError: If the prompt is unknown or the call fails after retries
        """
        op = self._context("AzureOpenAIGateway:complete", question, plugin, function, context)
        try:
            kwargs = self._request(question, plugin, function, arguments, stream=False)
            response = await self._call_with_retry(**kwargs)

            if not response.choices:
                raise GatewayError("Model returned no choices")

            text = response.choices[0].message.content or ""
            prompt_tokens = completion_tokens = 0
            if getattr(response, "usage", None):
                prompt_tokens = response.usage.prompt_tokens
                completion_tokens = response.usage.completion_tokens

            return Completion(
                text=text,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )

        except Exception as e:
            self.operation_logger.log_exception(e, op)
            raise self._to_gateway_error(
                e, "AzureOpenAIGateway:complete - An error occurred while executing prompt"
            ) from e
        finally:
            self.operation_logger.log_operation(op)

    async def complete_streaming(
        self,
        question: str,
        plugin: str,
        function: str,
        arguments: dict[str, Any] | None = None,
        context: OperationContext | None = None,
    ) -> AsyncIterator[CompletionChunk]:
        """Execute a model function and stream the completion.

        Yields one chunk per content delta, then exactly one chunk with
        ``is_final=True`` carrying the token usage of the whole call.

        Raises:
            GatewayError: If the prompt is unknown or the call fails
        """
        op = self._context(
            "AzureOpenAIGateway:complete_streaming", question, plugin, function, context
        )
        try:
            kwargs = self._request(question, plugin, function, arguments, stream=True)
            parts: list[str] = []
            usage = None

            async with aclosing(self._stream_with_retry(**kwargs)) as stream:
                async for chunk in stream:
                    if getattr(chunk, "usage", None):
                        usage = chunk.usage
                    if not chunk.choices:
                        continue
                    content = chunk.choices[0].delta.content
                    if content:
                        parts.append(content)
                        yield CompletionChunk(text=content)

            if usage:
                prompt_tokens = usage.prompt_tokens
                completion_tokens = usage.completion_tokens
            else:
                prompt_tokens = self.count_tokens(
                    "\n".join(str(m["content"]) for m in kwargs["messages"])
                )
                completion_tokens = self.count_tokens("".join(parts))

            yield CompletionChunk(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                is_final=True,
            )

        except Exception as e:
            self.operation_logger.log_exception(e, op)
            raise self._to_gateway_error(
                e, "AzureOpenAIGateway:complete_streaming - An error occurred while getting response"
            ) from e
        finally:
            self.operation_logger.log_operation(op)

    async def _call_with_retry(self, **kwargs: Any) -> Any:
        """Make API call with retry logic."""
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await self.client.chat.completions.create(**kwargs)

            except RateLimitError as e:
                last_error = e
                delay = self.RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"Rate limited, retrying in {delay}s (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)

            except APIError as e:
                last_error = e
                status_code = getattr(e, "status_code", None)
                if status_code and status_code >= 500:
                    delay = self.RETRY_DELAY_BASE * (2**attempt)
                    logger.warning(
                        f"Server error {status_code}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                    )
                    await asyncio.sleep(delay)
                else:
                    raise

        raise last_error or GatewayError("Max retries exceeded")

    async def _stream_with_retry(self, **kwargs: Any) -> AsyncIterator[Any]:
        """Stream raw chunks, retrying only until the first chunk arrives."""
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            started = False
            try:
                response = await self.client.chat.completions.create(**kwargs)
                async for chunk in response:
                    started = True
                    yield chunk
                return

            except RateLimitError as e:
                if started:
                    raise
                last_error = e
                delay = self.RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"Rate limited during stream, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if started or not status_code or status_code < 500:
                    raise
                last_error = e
                delay = self.RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"Server error during stream, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)

        raise last_error or GatewayError("Max retries exceeded")

    def count_tokens(self, text: str) -> int:
        """Count tokens for text using the model's tiktoken encoding."""
        try:
            encoding = tiktoken.encoding_for_model(self.model)
        except KeyError:
            # Unknown model name; use the GPT-4 family encoding
            encoding = tiktoken.get_encoding("cl100k_base")
        return len(encoding.encode(text))

    async def close(self) -> None:
        """Close the client connection."""
        await self.client.close()
