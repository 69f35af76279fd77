import time
from typing import Callable, Tuple, Type, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

T = TypeVar("T")


def with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int,
    base_delay_s: float = 1.0,
    max_delay_s: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """Call ``fn`` with exponential backoff (base, 2*base, 4*base, ...).

    The last exception is re-raised once attempts are exhausted.
    """

    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception()
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0
        print(
            f"[Retry] {label} attempt {retry_state.attempt_number}/{max_attempts} failed: "
            f"{type(exc).__name__}: {exc}. Sleeping {wait_s:.2f}s...",
            flush=True,
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay_s, min=0, max=max_delay_s),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)
