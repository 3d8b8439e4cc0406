"""Operation logging and telemetry.

OperationLogger is the single logging collaborator used by routers,
gateways and directories. It writes to the standard ``logging`` tree;
``configure_logging`` decides where those records end up (console,
dated log files, Azure Application Insights).
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from opencensus.ext.azure.log_exporter import AzureLogHandler

from .models import ChatTurn, OperationContext

if TYPE_CHECKING:
    from src.config import Settings

OPERATIONS_LOGGER = "azure_sidekick.operations"
ERRORS_LOGGER = "azure_sidekick.errors"
CHAT_LOGGER = "azure_sidekick.chat"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class OperationLogger:
    """Log operations, exceptions and chat turns.

    Every log record carries the operation id, parent id and operation
    name as ``custom_dimensions`` so the Application Insights exporter
    can correlate nested operations.
    """

    def __init__(
        self,
        operations_logger: logging.Logger | None = None,
        errors_logger: logging.Logger | None = None,
        chat_logger: logging.Logger | None = None,
    ):
        self.operations = operations_logger or logging.getLogger(OPERATIONS_LOGGER)
        self.errors = errors_logger or logging.getLogger(ERRORS_LOGGER)
        self.chat = chat_logger or logging.getLogger(CHAT_LOGGER)

    @staticmethod
    def _dimensions(context: OperationContext) -> dict[str, object]:
        return {
            "operation_id": context.operation_id,
            "operation_name": context.operation_name,
            "parent_operation_id": context.parent_operation_id,
            "user_id": context.user_id,
            **context.metadata,
        }

    def log_operation(self, context: OperationContext) -> None:
        """Stamp the end time of an operation and log its duration."""
        context.end_time = datetime.now(timezone.utc)
        self.operations.info(
            f"{context.operation_name} completed in {context.elapsed_ms:.1f}ms "
            f"(operation={context.operation_id}, parent={context.parent_operation_id})",
            extra={
                "custom_dimensions": {
                    **self._dimensions(context),
                    "elapsed_ms": context.elapsed_ms,
                }
            },
        )

    def log_exception(self, exception: BaseException, context: OperationContext) -> None:
        """Log an exception against the operation that raised it."""
        context.end_time = datetime.now(timezone.utc)
        self.errors.error(
            f"{context.operation_name} failed: {exception} "
            f"(operation={context.operation_id}, parent={context.parent_operation_id})",
            exc_info=exception,
            extra={"custom_dimensions": self._dimensions(context)},
        )

    def log_chat_turn(
        self,
        turn: ChatTurn,
        context: OperationContext,
        original_question: str | None = None,
    ) -> None:
        """Log a completed exchange with its original and revised question."""
        self.chat.info(
            f"Chat turn {turn.id}: intent={turn.intent} function={turn.function} "
            f"prompt_tokens={turn.prompt_tokens} completion_tokens={turn.completion_tokens}",
            extra={
                "custom_dimensions": {
                    **self._dimensions(context),
                    "question_original": original_question or turn.original_question,
                    "question_revised": turn.question,
                    "response": turn.answer,
                    "intent": turn.intent,
                    "function": turn.function,
                    "prompt_tokens": turn.prompt_tokens,
                    "completion_tokens": turn.completion_tokens,
                }
            },
        )


def configure_logging(settings: "Settings") -> None:
    """Configure handlers for the application loggers.

    Args:
        settings: Application settings (log level, log directory and the
            Application Insights connection string)
    """
    root = logging.getLogger("azure_sidekick")
    root.setLevel(logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(settings.log_level.upper())
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    # Module loggers live under "src"; route them to the same handlers.
    src_logger = logging.getLogger("src")
    src_logger.setLevel(logging.INFO)
    src_logger.addHandler(console_handler)

    if settings.log_directory:
        log_dir = Path(settings.log_directory) / datetime.now().strftime("%Y-%m-%d")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "azure-sidekick.log", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        src_logger.addHandler(file_handler)

    if settings.applicationinsights_connection_string:
        azure_handler = AzureLogHandler(
            connection_string=settings.applicationinsights_connection_string
        )
        root.addHandler(azure_handler)
        src_logger.addHandler(azure_handler)
