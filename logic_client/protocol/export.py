"""
Exported Parameter Records

The lstk command lists every parameter the running graph exports, one
key-value line per parameter:

    objid=1 index=0 type=int value=5 min=0 max=10 def=0 obj_name=osc param_name=freq hide_in_ui=false read_only=false
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict

from . import kvp
from .types import Value, string_to_type, to_int


@dataclass(frozen=True)
class Export:
    """
    An exported parameter reported by the logic system.

    Attributes:
        objid: ID of the object that owns the parameter
        index: Parameter index within the object
        type: Type name ('int', 'float', 'string')
        value: Current value
        min: Minimum value
        max: Maximum value
        default: Default value ('def' on the wire)
        obj_name: Name of the owning object
        param_name: Name of the parameter
        hide_in_ui: Whether the parameter should be hidden from users
        read_only: Whether the parameter can be set
    """
    objid: int
    index: int
    type: str
    value: Value
    min: Value
    max: Value
    default: Value
    obj_name: str
    param_name: str
    hide_in_ui: bool = False
    read_only: bool = False

    @classmethod
    def from_line(cls, line: str) -> "Export":
        """
        Parse an export from a key-value line.

        Raises:
            UnsupportedTypeError: If the export's type cannot be converted
        """
        fields = kvp.parse_line(line)
        type_name = fields.get("type", "")

        return cls(
            objid=to_int(fields.get("objid", "")),
            index=to_int(fields.get("index", "")),
            type=type_name,
            value=string_to_type(fields.get("value", ""), type_name),
            min=string_to_type(fields.get("min", ""), type_name),
            max=string_to_type(fields.get("max", ""), type_name),
            default=string_to_type(fields.get("def", ""), type_name),
            obj_name=fields.get("obj_name", ""),
            param_name=fields.get("param_name", ""),
            hide_in_ui=fields.get("hide_in_ui") == "true",
            read_only=fields.get("read_only") == "true",
        )

    def __str__(self) -> str:
        return f"{self.objid},{self.index},{self.type},{self._format(self.value)} ({self.obj_name}: {self.param_name})"

    def to_kvp(self) -> str:
        """
        Format this export as a key-value line, as the server would send it.

        String values are unescaped twice on the way in (once by the line
        parser, once by the string conversion), so a literal backslash
        sequence such as \\t in a string export arrives as a tab and is
        written back as an escaped tab, not as the original text.
        """
        return (
            f"objid={self.objid} index={self.index} type={kvp.quote(self.type)} "
            f"read_only={str(self.read_only).lower()} hide_in_ui={str(self.hide_in_ui).lower()} "
            f"min={self._format(self.min)} max={self._format(self.max)} def={self._format(self.default)} "
            f"obj_name={kvp.quote(self.obj_name)} param_name={kvp.quote(self.param_name)} "
            f"value={self._format(self.value)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def _format(value: Value) -> str:
        if isinstance(value, str):
            return kvp.quote(value)
        return str(value)
