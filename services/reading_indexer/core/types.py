"""
Reading Indexer Core Types

Canonical type definitions shared by the store, the aggregator and the
incremental consumers.

SERIALIZATION CONTRACT:
    Record files are flat JSON objects. The `timestamp` key holds epoch
    seconds (string or integer on read, integer on write); every other key
    is a scalar reading.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Scalar = Union[str, int, float, bool, None]


# =============================================================================
# Core Enums
# =============================================================================

class Reducer(str, Enum):
    """Reduction applied to the values collected for a field in one interval."""
    COUNT = "count"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    FIRST = "first"
    LAST = "last"
    AVERAGE = "average"
    CONSTANT = "constant"


class FieldKind(str, Enum):
    """How the per-record value of an output field is obtained."""
    EXPRESSION = "expression"
    FIELD = "field"
    CONSTANT = "constant"


class ValueType(str, Enum):
    """Column type used when a value is handed to a database sink."""
    DECIMAL = "decimal"
    INTEGER = "integer"
    STRING = "string"


class OverwriteRule(str, Enum):
    """What a copy sink does when the destination file already exists."""
    OVERWRITE = "overwrite"
    OVERWRITE_IF_NEW = "overwrite_if_new"
    SKIP = "skip"


class TimestampSource(str, Enum):
    """Where a consumer reads a file's timestamp from."""
    PATH = "path"
    MTIME = "mtime"


class RunStatus(str, Enum):
    """Outcome of one consumer run."""
    SUCCESS = "success"
    IDLE = "idle"
    FAILED = "failed"


# =============================================================================
# Records & Ranges
# =============================================================================

class Record(BaseModel):
    """One timestamped reading as stored on disk."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(..., description="Capture time (unix seconds, UTC)")
    fields: dict[str, Scalar] = Field(default_factory=dict, description="Readings, excluding timestamp")

    def to_document(self) -> dict[str, Any]:
        """Flat JSON document as written to a record file."""
        document = dict(self.fields)
        document["timestamp"] = self.timestamp
        return document


@dataclass(frozen=True)
class DataRange:
    """Inclusive bounds of indexed data. (0, 0) means no data."""

    start: int = 0
    end: int = 0

    @property
    def is_empty(self) -> bool:
        return self.start == 0 and self.end == 0


@dataclass(frozen=True)
class DataStats:
    """Snapped range plus number of entries inside the requested bounds."""

    range: DataRange
    count: int


# =============================================================================
# Field Definitions
# =============================================================================

class FieldDefinition(BaseModel):
    """
    Configuration of one aggregated output field.

    Exactly one of `expression`, `field` or `constant` must be set. The
    expression is parsed when the aggregator is constructed so that a
    malformed formula fails the task up front.

    A direct field reads the raw key named by `field`, not the key named by
    `name`. To copy a raw key under its own name, set both to the same value
    (`{"name": "temp", "field": "temp", ...}`); leaving `field` out makes
    the definition invalid rather than silently null.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1)
    type: ValueType = Field(default=ValueType.DECIMAL)
    reducer: Reducer = Field(default=Reducer.CONSTANT, alias="aggregate_function")
    expression: Optional[str] = None
    field: Optional[str] = None
    constant: Optional[Scalar] = None
    precision: int = Field(default=2, ge=0, le=12)

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "FieldDefinition":
        sources = [
            self.expression not in (None, ""),
            self.field not in (None, ""),
            self.constant not in (None, ""),
        ]
        if sum(sources) != 1:
            raise ValueError(
                f"field '{self.name}' must define exactly one of expression, field or constant"
            )
        return self

    @property
    def kind(self) -> FieldKind:
        if self.expression:
            return FieldKind.EXPRESSION
        if self.field:
            return FieldKind.FIELD
        return FieldKind.CONSTANT


# =============================================================================
# Cursors
# =============================================================================

class ArchiveCursor(BaseModel):
    """Resume marker of a file archiver: last archived (timestamp, identity)."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = 0
    identity: str = ""

    def admits(self, timestamp: int, identity: str) -> bool:
        """True if an item at (timestamp, identity) comes after this cursor."""
        if timestamp != self.timestamp:
            return timestamp > self.timestamp
        return identity > self.identity


# =============================================================================
# Run Results
# =============================================================================

@dataclass
class ConsumerResult:
    """Result of one cursor-protocol consumer run."""

    name: str
    status: RunStatus = RunStatus.IDLE
    items_written: int = 0
    items_skipped: int = 0
    bytes_written: int = 0
    cursor_timestamp: Optional[int] = None
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status != RunStatus.FAILED
