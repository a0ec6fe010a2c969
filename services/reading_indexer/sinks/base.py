"""
Sink Base Classes

Common interface for all delivery targets of the cursor consumers.

Contract:
- open() acquires the target (directory, connection, pool)
- write(batch) delivers a whole batch and returns True only once it is
  durable at the target; returning False or raising aborts the run
- close() releases the target and discards anything half-written
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Sequence, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ArchiveItem:
    """A source file selected for archiving."""

    path: Path  # absolute source path
    relative_path: Path  # path below the archiver's source root
    timestamp: int
    size: int

    @property
    def identity(self) -> str:
        """Cursor tie-break key: the fully-qualified source path."""
        return str(self.path)


@dataclass(frozen=True)
class PersistRow:
    """A record prepared for a database sink, keyed by its content hash."""

    timestamp: int
    values: dict[str, Any]
    content_hash: str


class Sink(ABC, Generic[T]):
    """
    Abstract base class for delivery targets.

    Usage:
        async with CopySink(destination) as sink:
            ok = await sink.write(items)
    """

    def __init__(self, name: str):
        self.name = name

    async def open(self) -> None:
        """Prepare the target. Default: nothing to do."""

    @abstractmethod
    async def write(self, batch: Sequence[T]) -> bool:
        """Deliver a batch. True once the whole batch is durable."""
        ...

    async def close(self) -> None:
        """Release the target. Default: nothing to do."""

    async def __aenter__(self) -> "Sink[T]":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
