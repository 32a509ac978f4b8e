"""
Core Data Models for Budget Tracker

These models define the strict schemas for spending records and the backup
snapshots built from them. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Serialize to the exact on-disk snapshot format
4. Keep money as Decimal everywhere except the JSON wire format

DESIGN DECISION: Snapshot files are a fixed interchange format
(camelCase keys, amounts as JSON numbers). Field aliases and JSON-only
serializers keep the Python side idiomatic without changing the files.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_serializer,
)

from budget_tracker.validation.sanitizer import (
    MAX_DETAILS_LENGTH,
    is_iso_date,
    sanitize_details,
)


# =============================================================================
# RECORDS
# =============================================================================

def _sanitize(v: Any) -> Any:
    # Runs before the length checks so stripped text is what gets measured
    if isinstance(v, str):
        return sanitize_details(v)
    return v


def _float_to_decimal(v: Any) -> Any:
    # JSON numbers arrive as floats; go through repr so 12.5 stays 12.5
    if isinstance(v, float):
        return Decimal(repr(v))
    return v


def _check_iso_date(v: str) -> str:
    if not is_iso_date(v):
        raise ValueError(f"Date must be ISO-8601, got: {v!r}")
    return v.strip()


Amount = Annotated[
    Decimal,
    BeforeValidator(_float_to_decimal),
    Field(gt=0, description="Amount spent"),
]
Details = Annotated[
    str,
    BeforeValidator(_sanitize),
    Field(
        min_length=1,
        max_length=MAX_DETAILS_LENGTH,
        description="What the money was spent on (sanitized)",
    ),
]
IsoDate = Annotated[
    str,
    AfterValidator(_check_iso_date),
    Field(description="ISO-8601 date or datetime of the spending"),
]


class RecordDraft(BaseModel):
    """
    Validated input for a record that has no id yet.

    Used by the store before inserting or updating.
    """

    amount: Amount
    details: Details
    date: IsoDate


class Record(BaseModel):
    """
    A single spending entry.

    Owned exclusively by the record store. Backups carry full copies,
    restore writes them back with their original ids.
    """
    model_config = ConfigDict(extra="ignore")

    id: int = Field(
        ...,
        description="Unique id assigned by the record store"
    )
    amount: Amount
    details: Details
    date: IsoDate

    @field_serializer('amount', when_used='json')
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)


# =============================================================================
# SNAPSHOTS
# =============================================================================

class DateRange(BaseModel):
    """Earliest and latest record dates in a snapshot (empty when no records)."""

    earliest: str = ""
    latest: str = ""


class SnapshotMetadata(BaseModel):
    """
    Summary written alongside the records.

    Invariants: total_records == len(records) and
    total_amount == sum(record.amount).
    """
    model_config = ConfigDict(populate_by_name=True)

    total_records: int = Field(
        ...,
        ge=0,
        alias="totalRecords",
    )
    date_range: DateRange = Field(
        default_factory=DateRange,
        alias="dateRange",
    )
    total_amount: Annotated[Decimal, BeforeValidator(_float_to_decimal)] = Field(
        default=Decimal("0"),
        alias="totalAmount",
    )

    @field_serializer('total_amount', when_used='json')
    def serialize_total(self, v: Decimal) -> Union[float, int]:
        # An empty snapshot writes a plain 0
        return int(v) if v == 0 else float(v)


class Snapshot(BaseModel):
    """
    A complete, immutable backup of the record store plus settings.

    The timestamp doubles as the snapshot's identity key.
    """
    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(
        ...,
        description="Snapshot format version"
    )
    timestamp: str = Field(
        ...,
        description="ISO-8601 creation time"
    )
    records: list[Record] = Field(
        default_factory=list,
        description="Full copy of the records at creation time"
    )
    settings: Any = Field(
        default=None,
        description="Opaque settings blob, passed through unparsed"
    )
    metadata: SnapshotMetadata

    @property
    def snapshot_id(self) -> str:
        return sanitize_timestamp(self.timestamp)


# =============================================================================
# DERIVED VIEWS
# =============================================================================

class BackupInfo(BaseModel):
    """
    Summary view of one snapshot file.

    Never persisted; computed when listing.
    """

    id: str = Field(
        ...,
        description="External id, also the filename fragment"
    )
    filename: str
    timestamp: str = Field(
        ...,
        description="Snapshot creation time as written in the file"
    )
    size: int = Field(
        default=0,
        ge=0,
        description="File size in bytes"
    )
    record_count: int = Field(default=0, ge=0)
    total_amount: Decimal = Field(default=Decimal("0"))
    is_verified: bool = Field(
        default=False,
        description="Did the file pass integrity verification?"
    )


class BackupStats(BaseModel):
    """Aggregate view over all stored snapshots."""

    total_backups: int = 0
    total_size: int = 0
    oldest_timestamp: Optional[str] = None
    newest_timestamp: Optional[str] = None


class RestoreResult(BaseModel):
    """Outcome of restoring a snapshot into the record store."""

    backup_id: str
    snapshot_timestamp: str
    restored_records: int = Field(ge=0)
    skipped_records: int = Field(default=0, ge=0)
    settings_restored: bool = False
    transactional: bool = Field(
        default=True,
        description="Was the replace done inside a single transaction?"
    )
    completed_at: datetime


def sanitize_timestamp(timestamp: str) -> str:
    """Turn an ISO timestamp into a filename-safe id (':' and '.' become '-')."""
    return timestamp.replace(":", "-").replace(".", "-")
