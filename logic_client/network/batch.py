"""
Batch Parameter Setter

Sets a list of parameters strictly one at a time over a single client. The
next set command is only issued after the previous one has finished, so a
batch never interleaves with itself on the connection.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from ..protocol.commands import Command

logger = logging.getLogger(__name__)


@dataclass
class SetEntry:
    """
    One parameter assignment in a batch.

    Attributes:
        objid: Object ID of the parameter
        index: Parameter index
        value: Value to set
        result: True/False once the set has finished, None before
        command: The set Command used for this entry
    """
    objid: int
    index: int
    value: Any
    result: Optional[bool] = None
    command: Optional[Command] = None

    @classmethod
    def coerce(cls, item) -> "SetEntry":
        """Build an entry from a SetEntry, an (objid, index, value) tuple or a dict."""
        if isinstance(item, cls):
            return item
        if isinstance(item, dict):
            return cls(objid=item["objid"], index=item["index"], value=item["value"])
        objid, index, value = item
        return cls(objid=objid, index=index, value=value)


class BatchSetter:
    """
    Drives a sequence of set commands over one client.

    Usage:
        def done(count, entries):
            print(f"{count} of {len(entries)} set")

        BatchSetter(client, [(1, 0, 5), (1, 1, 0.25)], done).start()

    The final callback receives the number of successful sets and the list
    of SetEntry objects, each annotated with its result and Command.
    """

    def __init__(self, client, entries: Iterable, callback: Callable[[int, List[SetEntry]], Any] = None):
        """
        Args:
            client: LogicClient (anything with a set() method returning a Command)
            entries: SetEntry objects, (objid, index, value) tuples or dicts
            callback: Called once with (success_count, entries) at the end

        Raises:
            TypeError: If entries is not an iterable of assignments
        """
        if entries is None or isinstance(entries, (str, bytes)):
            raise TypeError("Pass a list of (objid, index, value) entries to set_multi")

        self.client = client
        self.entries: List[SetEntry] = [SetEntry.coerce(item) for item in entries]
        self.callback = callback
        self.count = 0
        self.finished = False
        self._position = 0
        self._issuing = False
        self._completed_inline = False

    def start(self) -> Optional[Command]:
        """
        Issue the first set command.

        Returns:
            The first Command, or None if the batch was empty (in which
            case the callback has already run).
        """
        if not self.entries:
            self._finish()
            return None
        return self._advance()

    def _advance(self) -> Command:
        # Commands that finish inside add_both (e.g. on a closed client) are
        # chained here in a loop rather than through nested continuations.
        first = None
        self._issuing = True
        try:
            while True:
                self._completed_inline = False
                entry = self.entries[self._position]
                command = self.client.set(entry.objid, entry.index, entry.value)
                if first is None:
                    first = command
                command.add_both(self._on_complete)
                if not self._completed_inline:
                    break
                if self._position >= len(self.entries):
                    self._finish()
                    break
        finally:
            self._issuing = False
        return first

    def _on_complete(self, command: Command) -> None:
        entry = self.entries[self._position]
        entry.command = command
        entry.result = bool(command.success)
        if entry.result:
            self.count += 1
        else:
            logger.debug(f"set {entry.objid},{entry.index} failed: {command.message}")

        self._position += 1
        if self._issuing:
            self._completed_inline = True
        elif self._position < len(self.entries):
            self._advance()
        else:
            self._finish()

    def _finish(self) -> None:
        self.finished = True
        if self.callback is not None:
            self.callback(self.count, self.entries)
