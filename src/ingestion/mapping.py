"""
Payload Mapping for Telemetry Ingestion

Turns a nested JSON object into a flat record using a declarative table of
(source path, destination field, type) entries. Types resolve to a closed
set of conversion functions; an unknown type fails when the table is
loaded, not when a message arrives.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from src.reconciliation.records import LAYOUT
from src.utils.errors import ConfigurationError, MappingError

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


def parse_local_time(value: Any) -> datetime:
    """Parse a local wall-clock timestamp and convert it to UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.strptime(value, LAYOUT)
        except ValueError as e:
            raise MappingError(f"Parse time location: {e}") from e
    else:
        raise MappingError(f"Expected a time string, got {type(value).__name__}: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


def to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MappingError(f"Expected a number, got {value!r}")
    return int(value)


def to_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MappingError(f"Expected a number, got {value!r}")
    return float(value)


def passthrough(value: Any) -> Any:
    return value


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "time.Time": parse_local_time,
    "time": parse_local_time,
    "int64": to_int,
    "int": to_int,
    "float64": to_float,
    "float": to_float,
    "string": passthrough,
    "passthrough": passthrough,
}


@dataclass(frozen=True)
class FieldMapping:
    """One entry of the mapping table."""

    source: str
    destination: str
    type: str

    @property
    def path(self) -> List[str]:
        return self.source.split(PATH_SEPARATOR)

    @property
    def converter(self) -> Callable[[Any], Any]:
        return CONVERTERS[self.type]


def resolve_path(payload: Mapping[str, Any], path: Sequence[str]) -> Optional[Any]:
    """Follow a path through nested objects; None if any segment is missing."""
    value: Any = payload
    for segment in path:
        if not isinstance(value, Mapping) or segment not in value:
            return None
        value = value[segment]
    return value


class PayloadMapper:
    """Maps decoded bus payloads into records for the telemetry table."""

    def __init__(self, entries: Optional[Sequence[Mapping[str, Any]]] = None):
        """
        Initialize the mapper.

        Args:
            entries: Mapping table as loaded from YAML; empty selects the
                built-in meter mapping

        Raises:
            ConfigurationError: If an entry is incomplete or names an unknown type
        """
        self.fields: List[FieldMapping] = [self._parse_entry(i, e) for i, e in enumerate(entries or [])]
        logger.debug(f"Payload mapper with {len(self.fields)} mapped fields")

    @staticmethod
    def _parse_entry(index: int, entry: Mapping[str, Any]) -> FieldMapping:
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"Mapping entry {index} must be a mapping")
        missing = [k for k in ("source", "destination") if not entry.get(k)]
        if missing:
            raise ConfigurationError(f"Mapping entry {index} lacks {missing}")
        type_name = entry.get("type") or "passthrough"
        if type_name not in CONVERTERS:
            raise ConfigurationError(
                f"Mapping entry {index} ({entry['source']}) has unsupported type '{type_name}'. "
                f"Must be one of {sorted(CONVERTERS)}"
            )
        return FieldMapping(str(entry["source"]), str(entry["destination"]), type_name)

    def map(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Map one payload.

        Raises:
            MappingError: If a value cannot be converted or required
                meter fields are missing
        """
        if not self.fields:
            return self.map_meter(payload)

        record: Dict[str, Any] = {}
        for mapping in self.fields:
            value = resolve_path(payload, mapping.path)
            record[mapping.destination] = None if value is None else mapping.converter(value)
            logger.debug(f"Mapped {mapping.source} -> {mapping.destination} = {record[mapping.destination]!r}")
        return record

    @staticmethod
    def map_meter(payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Built-in mapping for smart meter payloads (Time plus eHZ readings)."""
        if "Time" not in payload:
            raise MappingError("Error search 'Time'")
        meter = payload.get("eHZ")
        if not isinstance(meter, Mapping):
            raise MappingError("Error search 'eHZ'")
        for name in ("Power", "E_in", "E_out"):
            if name not in meter:
                raise MappingError(f"Error search '{name}'")

        record = {
            "time": parse_local_time(payload["Time"]),
            "powercurr": to_int(meter["Power"]),
            "total": to_float(meter["E_in"]),
            "powerout": to_float(meter["E_out"]),
        }
        # Negative current power is reported as output power
        if record["powercurr"] < 0 and record["powerout"] == 0:
            record["powerout"] = float(-record["powercurr"])
            record["powercurr"] = 0
        return record
