from typing import Protocol, Any, Awaitable, Callable


class RetryPort(Protocol):
    """Abstract in-place retry for async operations.

    Used for single calls that should be retried where they happen (an RPC
    read, a receipt lookup). Job-level retries are the job queue's business
    and go through its re-enqueue policy instead.
    """
    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:  # pragma: no cover - protocol
        """Execute an async callable with retry semantics.

        Args:
            func: Async callable returning a result.
            *args/**kwargs: Passed to the callable.
            Supported kw overrides (optional): attempts, wait_initial, wait_max, exception_types.
        Returns:
            Result of the successful invocation.
        Raises:
            Propagates last exception after exhausting attempts, or immediately
            for exceptions outside `exception_types`.
        """
        ...
