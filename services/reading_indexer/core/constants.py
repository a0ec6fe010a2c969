"""
Reading Indexer Constants

Central defaults for record layout, aggregation and consumer status files.
"""

# =============================================================================
# Record Layout
# =============================================================================

# Extension of every record file in a time-indexed tree
RECORD_EXTENSION: str = ".json"

# Key holding the capture time inside a record document
TIMESTAMP_KEY: str = "timestamp"

# <year>/<month>/<day>/<hour>/<minute>/<second>.json
PATH_DEPTH: int = 6

# Suffix of files that are still being written
TEMP_SUFFIX: str = ".tmp"


# =============================================================================
# Aggregation
# =============================================================================

DEFAULT_AGGREGATION_PERIOD: int = 5

DEFAULT_PRECISION: int = 2

# Built-in constants usable in a field definition
CONSTANT_AGGREGATOR_ID: str = "$aggregatorId"
CONSTANT_AGGREGATION_PERIOD: str = "$aggregationPeriod"

# Sub-directory of an aggregator's root holding its output records
AGGREGATOR_DATA_DIR: str = "data"


# =============================================================================
# Workers
# =============================================================================

DEFAULT_STORE_WORKERS: int = 8
DEFAULT_AGGREGATOR_WORKERS: int = 4


# =============================================================================
# Consumers
# =============================================================================

# File inside a consumer's status directory holding its cursor
CURSOR_FILE_NAME: str = "last_record"

DEFAULT_ARCHIVE_EXTENSIONS: tuple[str, ...] = (RECORD_EXTENSION,)

# Archives read back by extract jobs
ZIP_EXTENSION: str = ".zip"

# Column holding the content hash of a persisted row
HASH_COLUMN: str = "record_hash"

# FTP defaults (seconds)
FTP_DEFAULT_PORT: int = 21
FTP_CONNECT_TIMEOUT: int = 30
FTP_SOCKET_TIMEOUT: int = 10
