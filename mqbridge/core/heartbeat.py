import threading
from abc import ABC, abstractmethod
from typing import Callable
from loguru import logger

from .state import BridgeState


class Heartbeat(ABC):
    """
    Periodically checks the health of a component.
    This class manages the timer, while subclasses provide the specific
    health check and what to do once the component is found unhealthy.
    The unhealthy hook fires at most once per start().
    """

    def __init__(self):
        self._heartbeat_timer: threading.Timer | None = None
        self._stop_event = threading.Event()

    @property
    @abstractmethod
    def _is_healthy(self) -> bool:
        """Must return True if the component is healthy."""
        raise NotImplementedError

    @abstractmethod
    def _on_unhealthy(self) -> None:
        """Called once on the first failed check."""
        raise NotImplementedError

    def start(self, interval_seconds: float):
        """Starts the heartbeat timer."""
        logger.debug(
            f"Starting heartbeat for {self.__class__.__name__} with {interval_seconds}s interval."
        )
        self._stop_event.clear()
        self._schedule_next_check(interval_seconds)

    def stop(self):
        """Stops the heartbeat timer."""
        logger.debug(f"Stopping heartbeat for {self.__class__.__name__}.")
        self._stop_event.set()
        if self._heartbeat_timer:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _schedule_next_check(self, interval_seconds: float):
        """Schedules the next execution of the heartbeat check."""
        if self._stop_event.is_set():
            return

        self._heartbeat_timer = threading.Timer(
            interval_seconds, self._run_heartbeat_check, [interval_seconds]
        )
        self._heartbeat_timer.daemon = True
        self._heartbeat_timer.start()

    def _run_heartbeat_check(self, interval_seconds: float):
        """The core logic executed by the timer."""
        component_name = self.__class__.__name__

        if self._is_healthy:
            logger.debug(f"Heartbeat check PASSED for {component_name}.")
            self._schedule_next_check(interval_seconds)
            return

        logger.info(f"Heartbeat check found {component_name} stopping. Exiting ...")
        self._stop_event.set()
        try:
            self._on_unhealthy()
        except Exception:
            logger.exception(f"Unhealthy hook of {component_name} raised.")


class StateHeartbeat(Heartbeat):
    """Watches the shared bridge state and fires a callback once it turns unhealthy."""

    def __init__(self, state: BridgeState, on_unhealthy: Callable[[], None]):
        super().__init__()
        self.state = state
        self._callback = on_unhealthy

    @property
    def _is_healthy(self) -> bool:
        return self.state.healthy

    def _on_unhealthy(self) -> None:
        self._callback()
