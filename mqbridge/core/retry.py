from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from .outcome import is_transient
from .state import BridgeState


def build_retrier(publishing_config: dict | None, state: BridgeState | None = None) -> Retrying:
    """
    Builds the retry policy used by the destinations. Only transient
    transport errors are retried; the last error is re-raised once the
    attempts are exhausted.

    With a `state`, waits between attempts end as soon as the bridge stops,
    and an attempt failing after that is not retried.
    """
    publishing_config = publishing_config or {}
    stop = stop_after_attempt(publishing_config.get("retry_attempts", 3))
    kwargs = {}
    if state is not None:
        stop = stop_any(stop, lambda retry_state: not state.healthy)
        kwargs["sleep"] = state.wait

    return Retrying(
        stop=stop,
        wait=wait_exponential(
            multiplier=1,
            min=publishing_config.get("retry_min_wait_seconds", 2),
            max=publishing_config.get("retry_max_wait_seconds", 10),
        ),
        retry=retry_if_exception(is_transient),
        reraise=True,
        **kwargs,
    )
