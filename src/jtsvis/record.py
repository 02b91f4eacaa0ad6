"""Record and metric value model for jtsvis.

A Record is one timestamped JSON sample produced by a probe. Before it can be
aggregated, the arbitrary JSON payload is flattened into a sorted mapping of
dotted key paths to MetricValue scalars.

Example:
    >>> flatten({"cpu": {"user": 3, "sys": 1.5}, "disks": ["sda", "sdb"]})
    {'cpu.sys': MetricValue(FLOAT, 1.5), 'cpu.user': MetricValue(INTEGER, 3),
     'disks.0': MetricValue(STRING, 'sda'), 'disks.1': MetricValue(STRING, 'sdb')}
"""

from __future__ import annotations

import functools
import json
import math
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

I64_MIN = -(2**63)
I64_MAX = 2**63 - 1


class ValueKind(IntEnum):
    """Kinds of flattened scalars, in their sort order."""

    NULL = 0
    BOOL = 1
    INTEGER = 2
    FLOAT = 3
    STRING = 4


def _float_order_key(value: float) -> int:
    """Map a float onto an integer following the IEEE 754 total order."""
    bits = struct.unpack(">q", struct.pack(">d", value))[0]
    if bits < 0:
        bits ^= 0x7FFFFFFFFFFFFFFF
    return bits


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class MetricValue:
    """A single flattened scalar taken from a probe's JSON output.

    Values of different kinds never compare equal: ``1``, ``1.0`` and
    ``True`` are three distinct members of a set.

    Attributes:
        kind: The scalar kind.
        value: The Python value (None, bool, int, float or str).
    """

    kind: ValueKind
    value: None | bool | int | float | str = None

    @classmethod
    def from_json(cls, value: Any) -> MetricValue:
        """Build a MetricValue from a decoded JSON scalar.

        Kinds are attempted in a fixed order (bool, integer, float, string,
        null) since ``bool`` is a subclass of ``int`` in Python.

        Integers outside the signed 64-bit range stay integers and are
        clamped to the nearest bound: large positive values to ``I64_MAX``
        and large negative values to ``I64_MIN``. Negative values are not
        pushed to the maximum, and neither sign is converted to a float.

        Raises:
            TypeError: If value is not a JSON scalar.
        """
        if isinstance(value, bool):
            return cls(ValueKind.BOOL, value)
        if isinstance(value, int):
            # Out-of-range integers are clamped, not widened
            return cls(ValueKind.INTEGER, min(max(value, I64_MIN), I64_MAX))
        if isinstance(value, float):
            return cls(ValueKind.FLOAT, value)
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        if value is None:
            return cls(ValueKind.NULL)
        raise TypeError(f"Not a JSON scalar: {value!r}")

    @property
    def is_integer(self) -> bool:
        return self.kind is ValueKind.INTEGER

    @property
    def is_number(self) -> bool:
        return self.kind in (ValueKind.INTEGER, ValueKind.FLOAT)

    def as_int(self) -> int | None:
        return self.value if self.kind is ValueKind.INTEGER else None

    def as_float(self) -> float | None:
        if self.is_number:
            return float(self.value)
        return None

    def to_json(self) -> str:
        """Render the value as it would appear in JSON."""
        return json.dumps(self.value)

    def _sort_key(self) -> tuple[int, Any]:
        if self.kind is ValueKind.NULL:
            return (self.kind, 0)
        if self.kind is ValueKind.FLOAT:
            return (self.kind, _float_order_key(self.value))
        return (self.kind, self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetricValue):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other: MetricValue) -> bool:
        if not isinstance(other, MetricValue):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._sort_key())

    def __repr__(self) -> str:
        return f"MetricValue({self.kind.name}, {self.value!r})"


@dataclass(frozen=True)
class FlattenedRecord:
    """A record whose JSON value has been flattened into metrics."""

    target: str
    timestamp: float
    metrics: dict[str, MetricValue]


@dataclass(frozen=True)
class Record:
    """One timestamped sample, as stored in the JSONL line log.

    Attributes:
        target: Name of the poll target that produced the sample.
        timestamp: Seconds since the epoch (fractional).
        value: The probe's JSON output.
    """

    target: str
    timestamp: float
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"target": self.target, "timestamp": self.timestamp, "value": self.value}

    def to_json(self) -> str:
        """Convert to a single JSONL line (without the terminator)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> Record:
        """Parse a record object read from the line log.

        Raises:
            ValueError: If the object does not have the record shape.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Record must be a JSON object, got {type(data).__name__}")
        for name in ("target", "timestamp", "value"):
            if name not in data:
                raise ValueError(f"Record missing required field '{name}'")

        target = data["target"]
        if not isinstance(target, str):
            raise ValueError("Record field 'target' must be a string")

        timestamp = data["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("Record field 'timestamp' must be a number")
        try:
            timestamp = float(timestamp)
        except OverflowError as e:
            raise ValueError("Record field 'timestamp' is out of range") from e
        if not math.isfinite(timestamp):
            raise ValueError(f"Record field 'timestamp' must be finite: {timestamp}")

        return cls(target=target, timestamp=timestamp, value=data["value"])

    def flatten(self) -> FlattenedRecord:
        return FlattenedRecord(
            target=self.target,
            timestamp=self.timestamp,
            metrics=flatten(self.value),
        )


def flatten(value: Any) -> dict[str, MetricValue]:
    """Flatten a JSON document into dotted key paths.

    Object members extend the path with ``.<name>`` and array elements with
    ``.<index>``, the index zero-padded to the width of the largest index so
    that keys sort in element order. A scalar document maps to the key ``""``.

    Args:
        value: A decoded JSON document.

    Returns:
        Dict of key path to MetricValue, in lexicographic key order.
    """
    items: dict[str, MetricValue] = {}
    _flatten_into(value, "", items)
    return dict(sorted(items.items()))


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _flatten_into(value: Any, key: str, items: dict[str, MetricValue]) -> None:
    if isinstance(value, dict):
        for name, child in value.items():
            _flatten_into(child, _join(key, str(name)), items)
    elif isinstance(value, (list, tuple)):
        width = len(str(len(value) - 1)) if value else 1
        for i, child in enumerate(value):
            _flatten_into(child, _join(key, f"{i:0{width}d}"), items)
    else:
        items[key] = MetricValue.from_json(value)
