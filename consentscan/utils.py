import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Iterator, List, Tuple, Type, TypeVar

T = TypeVar("T")


def batch(iterable: Iterable[T], n: int = 1) -> Iterator[List[T]]:
    """Yield consecutive chunks of at most ``n`` items."""
    if n < 1:
        raise ValueError("batch size must be at least 1")
    chunk: List[T] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) == n:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def string_to_boolean(value) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("yes", "true", "t", "y", "1", "on"):
        return True
    if s in ("no", "false", "f", "n", "0", "off"):
        return False
    raise ValueError(f"Cannot interpret '{value}' as a boolean")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.5,
    timeout: float = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``fn()`` up to ``max_attempts`` times. Attempt ``n`` (0-based) that
    fails waits ``base_delay * (n + 1)`` seconds before the next one. Each
    attempt is bounded by ``timeout`` seconds when given. The last error is
    re-raised once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            if timeout is not None:
                return await asyncio.wait_for(fn(), timeout=timeout)
            return await fn()
        except retry_on as e:
            logging.warning(
                f"[RETRY] Attempt {attempt + 1}/{max_attempts} of {label} failed: {e!r}"
            )
            if attempt == max_attempts - 1:
                logging.error(f"[RETRY] {label} failed after {max_attempts} attempts.")
                raise
            await sleep(base_delay * (attempt + 1))
