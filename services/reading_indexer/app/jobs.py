"""
Job Configuration

Loads the jobs file and turns each entry into a runnable scheduled job.

Jobs file layout (JSON):
    {
        "aggregators": [{"name": "weather-5s", "source_path": "...", "fields": [...]}],
        "archivers":   [{"name": "weather-zip", "type": "zip", "source_path": "...", ...}],
        "persisters":  [{"name": "weather-db", "collection": "weather", "columns": [...]}],
        "cleaners":    [{"name": "weather-clean", "source_path": "...", "consumers": [...]}]
    }

Relative paths resolve below `settings.cache_path`. A job with an invalid
definition is reported and left out; the remaining jobs still load.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..aggregator import AggregatorConfig, IntervalAggregator
from ..consumers import (
    ArchiveCursorStore,
    ArchiverConfig,
    ColumnDefinition,
    CursorStore,
    FileArchiver,
    PersisterConfig,
    RecordCursorStore,
    RecordPersister,
    RetentionCleaner,
)
from ..core.constants import (
    DEFAULT_AGGREGATION_PERIOD,
    DEFAULT_ARCHIVE_EXTENSIONS,
    FTP_CONNECT_TIMEOUT,
    FTP_DEFAULT_PORT,
    FTP_SOCKET_TIMEOUT,
    ZIP_EXTENSION,
)
from ..core.errors import ConfigurationError
from ..core.types import FieldDefinition, OverwriteRule, TimestampSource
from ..persistence import DatabasePool, ReadingRepository
from ..sinks import CopySink, DatabaseSink, ExtractSink, FtpSink, ZipSink
from ..sinks.base import ArchiveItem, Sink
from ..store import TimeIndexedStore
from .config import Settings


logger = logging.getLogger(__name__)


# =============================================================================
# Job Definitions
# =============================================================================

class JobSpec(BaseModel):
    """Fields shared by every job."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    enabled: bool = True
    interval_seconds: int = Field(default=60, gt=0, description="Pause between the end of a run and the next")


class AggregatorJob(JobSpec):
    source_path: Path
    output_path: Optional[Path] = None
    period: int = Field(default=DEFAULT_AGGREGATION_PERIOD, gt=0)
    max_intervals_per_run: int = Field(default=0, ge=0)
    fill_data_gaps: bool = False
    fields: list[FieldDefinition] = Field(..., min_length=1)
    workers: Optional[int] = Field(default=None, ge=1)


class FtpOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(..., min_length=1)
    port: int = FTP_DEFAULT_PORT
    username: str = "anonymous"
    password: str = ""
    root_path: str = "/"
    passive: bool = True
    connect_timeout: float = Field(default=FTP_CONNECT_TIMEOUT, gt=0)
    socket_timeout: float = Field(default=FTP_SOCKET_TIMEOUT, gt=0)


class ArchiverJob(JobSpec):
    type: Literal["copy", "zip", "ftp", "extract"]
    source_path: Path
    destination_path: Optional[Path] = None
    status_path: Optional[Path] = None
    extensions: tuple[str, ...] = DEFAULT_ARCHIVE_EXTENSIONS
    max_archive_files_count: int = Field(default=0, ge=0)
    max_archive_size: int = Field(default=0, ge=0)
    remove_source_after_archive: bool = False
    overwrite: OverwriteRule = OverwriteRule.OVERWRITE_IF_NEW
    timestamp_source: TimestampSource = TimestampSource.PATH
    ftp: Optional[FtpOptions] = None

    @model_validator(mode="after")
    def _target_present(self) -> "ArchiverJob":
        if self.type == "ftp" and self.ftp is None:
            raise ValueError("ftp archivers need an 'ftp' section")
        if self.type in ("copy", "zip", "extract") and self.destination_path is None:
            raise ValueError(f"{self.type} archivers need a 'destination_path'")
        return self


class PersisterJob(JobSpec):
    source_path: Path
    status_path: Optional[Path] = None
    collection: str = Field(..., min_length=1)
    columns: list[ColumnDefinition] = Field(..., min_length=1)
    write_duplicates: bool = False
    rows_per_run: int = Field(default=0, ge=0)


class CleanerJob(JobSpec):
    source_path: Path
    consumers: list[str] = Field(..., min_length=1, description="Names of archivers/persisters reading this tree")
    timestamp_source: Optional[TimestampSource] = Field(
        default=None, description="Defaults to the rule shared by the consumers"
    )


AnyJobSpec = Union[AggregatorJob, ArchiverJob, PersisterJob, CleanerJob]

SECTIONS: dict[str, type[JobSpec]] = {
    "aggregators": AggregatorJob,
    "archivers": ArchiverJob,
    "persisters": PersisterJob,
    "cleaners": CleanerJob,
}


@dataclass
class JobFailure:
    """A job definition that could not be loaded or built."""

    section: str
    name: str
    message: str


@dataclass
class JobsConfig:
    """Validated job definitions plus the ones that were rejected."""

    aggregators: list[AggregatorJob] = field(default_factory=list)
    archivers: list[ArchiverJob] = field(default_factory=list)
    persisters: list[PersisterJob] = field(default_factory=list)
    cleaners: list[CleanerJob] = field(default_factory=list)
    failures: list[JobFailure] = field(default_factory=list)

    def all_jobs(self) -> list[tuple[str, AnyJobSpec]]:
        return [(section, job) for section in SECTIONS for job in getattr(self, section)]

    def get(self, name: str) -> Optional[tuple[str, AnyJobSpec]]:
        for section, job in self.all_jobs():
            if job.name == name:
                return section, job
        return None


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    suffix = f" (+{len(details) - 1} more)" if len(details) > 1 else ""
    return f"{location}: {first.get('msg')}{suffix}" if location else f"{first.get('msg')}{suffix}"


def parse_jobs(document: dict[str, Any]) -> JobsConfig:
    """
    Validate a jobs document section by section.

    Raises:
        ConfigurationError: the document itself is not a JSON object or has
            unknown sections
    """
    if not isinstance(document, dict):
        raise ConfigurationError("jobs file must contain a JSON object")
    unknown = sorted(set(document) - set(SECTIONS))
    if unknown:
        raise ConfigurationError(f"unknown job sections: {', '.join(unknown)}")

    config = JobsConfig()
    seen: set[str] = set()
    for section, model in SECTIONS.items():
        entries = document.get(section) or []
        if not isinstance(entries, list):
            config.failures.append(JobFailure(section, "*", "section must be a list"))
            continue
        for index, entry in enumerate(entries):
            name = entry.get("name", f"#{index}") if isinstance(entry, dict) else f"#{index}"
            try:
                job = model.model_validate(entry)
            except ValidationError as e:
                config.failures.append(JobFailure(section, str(name), _first_error(e)))
                continue
            if job.name in seen:
                config.failures.append(JobFailure(section, job.name, "duplicate job name"))
                continue
            seen.add(job.name)
            getattr(config, section).append(job)

    for failure in config.failures:
        logger.error(f"Rejected {failure.section} job '{failure.name}': {failure.message}")
    return config


def load_jobs(path: Path) -> JobsConfig:
    """
    Read and validate the jobs file.

    Raises:
        ConfigurationError: the file is missing or not valid JSON
    """
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"cannot read jobs file {path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"jobs file {path} is not valid JSON: {e}") from e
    return parse_jobs(document)


# =============================================================================
# Runnable Jobs
# =============================================================================

@dataclass
class ScheduledJob:
    """A built job: what to run and how often."""

    name: str
    kind: str
    interval_seconds: int
    enabled: bool
    run: Callable[[], Awaitable[Any]]


class JobFactory:
    """
    Builds runnable jobs from validated definitions.

    Usage:
        factory = JobFactory(settings, jobs_config, db_pool)
        jobs, failures = factory.build_all()
    """

    def __init__(self, settings: Settings, config: JobsConfig, db_pool: Optional[DatabasePool] = None):
        self.settings = settings
        self.config = config
        self.db_pool = db_pool

    # Status directories are derived the same way for consumers and for the
    # cleaners that read their cursors
    def archiver_status_path(self, job: ArchiverJob) -> Path:
        return self.settings.resolve_path(job.status_path or Path("archivers") / job.name)

    def persister_status_path(self, job: PersisterJob) -> Path:
        return self.settings.resolve_path(job.status_path or Path("persisters") / job.name)

    def archiver_timestamp_source(self, job: ArchiverJob) -> TimestampSource:
        """Extract jobs read a flat directory of zips, ordered by when each was written."""
        if job.type == "extract" and "timestamp_source" not in job.model_fields_set:
            return TimestampSource.MTIME
        return job.timestamp_source

    def build_all(self) -> tuple[list[ScheduledJob], list[JobFailure]]:
        jobs: list[ScheduledJob] = []
        failures = list(self.config.failures)
        for section, spec in self.config.all_jobs():
            try:
                jobs.append(self.build(section, spec))
            except (ConfigurationError, ValidationError) as e:
                message = _first_error(e) if isinstance(e, ValidationError) else str(e)
                logger.error(f"Cannot build {section} job '{spec.name}': {message}")
                failures.append(JobFailure(section, spec.name, message))
        return jobs, failures

    def build(self, section: str, spec: AnyJobSpec) -> ScheduledJob:
        builders = {
            "aggregators": self.build_aggregator,
            "archivers": self.build_archiver,
            "persisters": self.build_persister,
            "cleaners": self.build_cleaner,
        }
        run = builders[section](spec)
        return ScheduledJob(
            name=spec.name,
            kind=section[:-1],
            interval_seconds=spec.interval_seconds,
            enabled=spec.enabled,
            run=run,
        )

    def build_aggregator(self, job: AggregatorJob) -> Callable[[], Awaitable[Any]]:
        config = AggregatorConfig(
            name=job.name,
            source_path=self.settings.resolve_path(job.source_path),
            output_path=self.settings.resolve_path(job.output_path or Path("aggregators") / job.name),
            period=job.period,
            max_intervals_per_run=job.max_intervals_per_run,
            fill_data_gaps=job.fill_data_gaps,
            fields=job.fields,
            workers=job.workers or self.settings.aggregator_workers,
        )
        aggregator = IntervalAggregator(
            config,
            source=TimeIndexedStore(config.source_path, max_workers=self.settings.store_workers),
            output=TimeIndexedStore(config.data_path, max_workers=self.settings.store_workers),
        )
        return lambda: asyncio.to_thread(aggregator.aggregate)

    def build_archiver(self, job: ArchiverJob) -> Callable[[], Awaitable[Any]]:
        extensions = (ZIP_EXTENSION,) if job.type == "extract" else job.extensions
        config = ArchiverConfig(
            name=job.name,
            source_path=self.settings.resolve_path(job.source_path),
            status_path=self.archiver_status_path(job),
            extensions=extensions,
            max_archive_files_count=job.max_archive_files_count,
            max_archive_size=job.max_archive_size,
            remove_source_after_archive=job.remove_source_after_archive,
            timestamp_source=self.archiver_timestamp_source(job),
        )
        archiver = FileArchiver(config, self.archive_sink(job))
        return archiver.run

    def archive_sink(self, job: ArchiverJob) -> Sink[ArchiveItem]:
        if job.type == "ftp":
            ftp = job.ftp
            return FtpSink(
                job.name,
                host=ftp.host,
                port=ftp.port,
                username=ftp.username,
                password=ftp.password,
                root_path=ftp.root_path,
                passive=ftp.passive,
                connect_timeout=ftp.connect_timeout,
                socket_timeout=ftp.socket_timeout,
            )
        destination = self.settings.resolve_path(job.destination_path)
        if job.type == "zip":
            return ZipSink(job.name, destination)
        if job.type == "extract":
            return ExtractSink(job.name, destination)
        return CopySink(job.name, destination, overwrite=job.overwrite)

    def build_persister(self, job: PersisterJob) -> Callable[[], Awaitable[Any]]:
        if self.db_pool is None:
            raise ConfigurationError("persister jobs need DATABASE_URL to be configured")
        config = PersisterConfig(
            name=job.name,
            source_path=self.settings.resolve_path(job.source_path),
            status_path=self.persister_status_path(job),
            collection=job.collection,
            columns=job.columns,
            write_duplicates=job.write_duplicates,
            rows_per_run=job.rows_per_run,
        )
        sink = DatabaseSink(
            job.name,
            ReadingRepository(self.db_pool),
            collection=job.collection,
            columns={column.name: column.type for column in job.columns},
        )
        persister = RecordPersister(
            config,
            sink,
            store=TimeIndexedStore(config.source_path, max_workers=self.settings.store_workers),
        )
        return persister.run

    def build_cleaner(self, job: CleanerJob) -> Callable[[], Awaitable[Any]]:
        archivers = {a.name: a for a in self.config.archivers}
        persisters = {p.name: p for p in self.config.persisters}

        consumers: list[CursorStore] = []
        sources: set[TimestampSource] = set()
        for name in job.consumers:
            if name in archivers:
                consumers.append(ArchiveCursorStore(self.archiver_status_path(archivers[name])))
                sources.add(self.archiver_timestamp_source(archivers[name]))
            elif name in persisters:
                consumers.append(RecordCursorStore(self.persister_status_path(persisters[name])))
                sources.add(TimestampSource.PATH)
            else:
                raise ConfigurationError(f"unknown consumer '{name}'")

        timestamp_source = job.timestamp_source
        if timestamp_source is None:
            if len(sources) > 1:
                raise ConfigurationError(
                    f"consumers of '{job.name}' mix path and mtime timestamps; set 'timestamp_source'"
                )
            timestamp_source = sources.pop()

        cleaner = RetentionCleaner(
            job.name,
            self.settings.resolve_path(job.source_path),
            consumers,
            timestamp_source=timestamp_source,
        )
        return lambda: asyncio.to_thread(cleaner.run)
