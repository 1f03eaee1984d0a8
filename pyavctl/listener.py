from abc import ABC, abstractmethod
from typing import Any, List, Optional
import logging

from pyavctl.commands import Response


class ConnectionListener(ABC):
    """Receives events from a device connection."""

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self, cause: Optional[BaseException]):
        pass

    @abstractmethod
    def notification_received(self, response: Response):
        """Called with an unsolicited message, at most once per type per debounce window."""
        pass


class AvrListener(ABC):
    """Receives state updates from a receiver."""

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    @abstractmethod
    def state_changed(self, channel_id: str, value: Any):
        """Called when a channel value is resolved by a query or a notification.

        Args:
            channel_id: Channel id, e.g. "zone1#volumeDb" or "displayInformation"
            value: bool, int, float, str or UNDEF
        """
        pass

    def error(self, error_message: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass


class MultiplexingListener(AvrListener):
    """Fans events out to registered listeners in registration order.

    Listeners are called one after the other on the event loop, so a slow
    listener delays the ones registered after it. A listener raising an
    exception is logged and does not stop delivery to the others.
    """

    _listeners: List[AvrListener]

    def __init__(self):
        self._listeners = []
        self._logger = logging.getLogger(__name__)

    def _dispatch(self, method: str, *args):
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as e:
                self._logger.error(f"Exception in {method}() of listener {listener}: {e}", exc_info=True)

    def connected(self):
        self._dispatch("connected")

    def disconnected(self):
        self._dispatch("disconnected")

    def state_changed(self, channel_id: str, value: Any):
        self._dispatch("state_changed", channel_id, value)

    def error(self, error_message: str):
        self._dispatch("error", error_message)

    def register_listener(self, listener: AvrListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: AvrListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            self._logger.info("Listener isn't registered")


class LoggingListener(AvrListener):

    def __init__(self, logger = logging):
        self.logger = logger

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def state_changed(self, channel_id: str, value: Any):
        self.logger.info(f"{channel_id} changed to: {value}")

    def error(self, error_message: str):
        self.logger.error(f"Error: {error_message}")
