"""
Parameter Subscriptions

A subscription remembers the last value seen for one exported parameter
and notifies a callback when it changes. Notifications are always
scheduled on the next event loop iteration, never run from inside the
update itself.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from ..protocol.types import to_int

logger = logging.getLogger(__name__)


class Subscription:
    """
    Watches one parameter on the logic system.

    Attributes:
        objid: Object ID of the parameter
        index: Parameter index within the object
        value: Last value received (None until the first update)
    """

    def __init__(self, objid: int, index: int, callback: Callable[[int, int, Any], Any]):
        """
        Args:
            objid: Object ID (anything int() accepts)
            index: Parameter index (anything int() accepts)
            callback: Called as callback(objid, index, value) after each update

        Raises:
            ValueError: If any argument is missing or the IDs are not integers
        """
        if objid is None or index is None or callback is None:
            raise ValueError("Subscription requires an object ID, parameter index and callback")

        try:
            self.objid = int(objid)
            self.index = int(index)
        except (TypeError, ValueError):
            raise ValueError("Object and parameter IDs must be integers")

        self.callback = callback
        self.value: Any = None

    @property
    def key(self):
        return self.objid, self.index

    def update(self, value: Any, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Store a new value and schedule the change notification."""
        self.value = value
        loop = loop or asyncio.get_running_loop()
        loop.call_soon(self._notify, value)

    def _notify(self, value: Any) -> None:
        try:
            self.callback(self.objid, self.index, value)
        except Exception:
            logger.exception(f"Error in subscription callback for {self.objid}:{self.index}")

    @staticmethod
    def parse_key(fields: dict):
        """Return the (objid, index) pair named by a SUB message, or None."""
        if "objid" not in fields or "index" not in fields:
            return None
        return to_int(fields["objid"]), to_int(fields["index"])

    def __repr__(self) -> str:
        return f"<Subscription: objid={self.objid} index={self.index} value={self.value!r}>"
