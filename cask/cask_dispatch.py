"""
Routing of wrapped results onto the channels of a kernel messaging transport.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from cask.cask_datatypes import Value, Error
from cask.cask_printer import Renderer


class KernelTransport(ABC):
    """The channels the evaluator publishes on. `context` identifies the originating request."""

    @abstractmethod
    def send_display_data(self, context: Any, data: Dict[str, str]) -> None: raise NotImplementedError
    @abstractmethod
    def send_reply_value(self, context: Any, execution_count: int, data: Dict[str, str]) -> None: raise NotImplementedError
    @abstractmethod
    def send_error(self, context: Any, execution_count: int, kind: str, message: str) -> None: raise NotImplementedError


class RecordingTransport(KernelTransport):
    """Keeps every message in memory, in send order."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def send_display_data(self, context, data):
        self.messages.append({"channel": "display_data", "context": context, "data": data})

    def send_reply_value(self, context, execution_count, data):
        self.messages.append({"channel": "execute_result", "context": context,
                              "execution_count": execution_count, "data": data})

    def send_error(self, context, execution_count, kind, message):
        self.messages.append({"channel": "error", "context": context,
                              "execution_count": execution_count, "ename": kind, "evalue": message})

    def on(self, channel: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["channel"] == channel]

    def clear(self):
        self.messages.clear()


class ResultDispatcher:
    """Sends one wrapped result on the channel its variant calls for."""

    def __init__(self, transport: Optional[KernelTransport] = None, renderer: Optional[Renderer] = None):
        self.transport = transport
        self.renderer = renderer or Renderer()

    def dispatch(self, context: Any, execution_count: int, outcome: Any) -> bool:
        """Returns True when a message was sent."""
        if self.transport is None:
            return False
        match outcome:
            case Error(kind=kind, message=message):
                self.transport.send_error(context, execution_count, kind, message)
                return True
            case Value(display=True):
                data = self.renderer.render(outcome)
                if not data:
                    return False
                self.transport.send_display_data(context, data)
                return True
            case Value():
                data = self.renderer.render(outcome)
                if not data:
                    return False
                self.transport.send_reply_value(context, execution_count, data)
                return True
        return False
