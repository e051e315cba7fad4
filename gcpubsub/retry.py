"""Execute-and-retry combinator."""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import anyio

from gcpubsub.exceptions import is_retryable
from gcpubsub.logger import logger

T = TypeVar("T")

RetryAction = Callable[[], Awaitable[T] | T]


@dataclass(frozen=True)
class RetryPolicy:
    """How an action is retried.

    Attributes:
        wait_millis: Time to wait before each attempt after the first one.
        max_attempts: Maximum number of times the action is invoked.
        retry_on_empty_result: Retry when the action returns None.
        retry_on_any_error: Retry on every error. When False only
            retryable errors (see ``is_retryable``) are retried.
        should_retry: Optional predicate receiving the result or the error.
            When it returns True the action is retried, whatever the flags.
    """

    wait_millis: int = 100
    max_attempts: int = 3
    retry_on_empty_result: bool = True
    retry_on_any_error: bool = True
    should_retry: Callable[[Any], bool] | None = None


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryRunner(Generic[T]):
    """Runs an action until it yields a usable result.

    When the attempts are exhausted ``run`` returns None instead of raising,
    so callers must treat None as "not obtained".
    """

    def __init__(self, policy: RetryPolicy | None = None):
        self.policy = policy if policy is not None else DEFAULT_RETRY_POLICY

    async def run(self, action: RetryAction[T]) -> T | None:
        policy = self.policy
        counter = 0
        while counter < policy.max_attempts:
            counter += 1

            if counter > 1:
                logger.debug(f"Retry number {counter} of the action in {policy.wait_millis}ms")
                await anyio.sleep(policy.wait_millis / 1000)

            try:
                result = await self._invoke(action)
            except Exception as error:
                if self._retry_on_error(error):
                    continue
                raise

            if policy.should_retry and policy.should_retry(result):
                logger.debug("The retry predicate accepted the result, will retry")
                continue

            if isinstance(result, BaseException):
                if self._retry_on_error(result, check_predicate=False):
                    continue
                raise result

            if result is None and policy.retry_on_empty_result:
                logger.debug("The result is empty, will retry")
                continue

            return result

        logger.debug(f"Max attempts {policy.max_attempts} reached, giving up")
        return None

    async def _invoke(self, action: RetryAction[T]) -> T:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result

    def _retry_on_error(self, error: BaseException, check_predicate: bool = True) -> bool:
        policy = self.policy
        if check_predicate and policy.should_retry and policy.should_retry(error):
            logger.debug("The retry predicate accepted the error, will retry")
            return True

        if policy.retry_on_any_error:
            logger.debug(f"Error caught, will retry: {error!r}")
            return True

        if is_retryable(error):
            logger.debug(f"Retryable error caught, will retry: {error!r}")
            return True

        return False


async def retry(action: RetryAction[T], policy: RetryPolicy | None = None) -> T | None:
    """Shortcut for ``RetryRunner(policy).run(action)``."""
    return await RetryRunner[T](policy).run(action)
