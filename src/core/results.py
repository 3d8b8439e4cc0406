"""Operation results returned by every public router operation.

An OperationResult is either a Success carrying an item or a Failure
carrying the error. Callers check ``is_success`` before touching the
item. In streaming mode ``is_final`` marks the single terminal result
of a stream.
"""

import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from .exceptions import RequestError

if TYPE_CHECKING:
    from .logger import OperationLogger
    from .models import OperationContext

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Base result.

    Attributes:
        status_code: HTTP-style status code
        is_final: True on the terminal result of a stream
    """

    status_code: int = HTTPStatus.OK
    is_final: bool = False

    @property
    def is_success(self) -> bool:
        return False


@dataclass
class Success(OperationResult):
    """Successful result carrying an item (usually a ChatTurn)."""

    item: Any = None

    @property
    def is_success(self) -> bool:
        return True


@dataclass
class Failure(OperationResult):
    """Failed result carrying the error that caused it."""

    error: BaseException | None = None
    operation_id: str | None = None

    def __post_init__(self) -> None:
        if self.status_code == HTTPStatus.OK:
            self.status_code = HTTPStatus.INTERNAL_SERVER_ERROR


def failure_from_exception(
    exception: BaseException,
    operation_logger: "OperationLogger | None",
    context: "OperationContext",
    is_final: bool = False,
) -> Failure:
    """Convert an exception caught at a router boundary into a Failure.

    RequestErrors have already been logged by the collaborator that
    raised them, so only other exceptions are logged here.

    Args:
        exception: The caught exception
        operation_logger: Logger used for the exception (if not yet logged)
        context: Context of the operation that failed
        is_final: Mark the failure as the terminal result of a stream

    Returns:
        Failure with the error's status code (500 by default)
    """
    if isinstance(exception, RequestError):
        status_code = exception.status_code
    else:
        status_code = HTTPStatus.INTERNAL_SERVER_ERROR
        if operation_logger:
            operation_logger.log_exception(exception, context)
        else:
            logger.error(f"{context.operation_name} failed: {exception}", exc_info=exception)

    return Failure(
        status_code=int(status_code),
        is_final=is_final,
        error=exception,
        operation_id=context.operation_id,
    )
