"""
Snapshot Codec

Turns record sets into versioned snapshot documents and back.

DESIGN DECISION: verify() works on the raw parsed document, not on the
Snapshot model. A file can be well-formed JSON and still be unusable;
verify answers "is this a backup we can restore?" without raising, so
listing can flag bad files instead of dropping out.

Version handling is best effort: a different version is logged and the
document is still read.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from budget_tracker.backup.errors import CorruptBackupError, InvalidBackupError
from budget_tracker.config import get_settings
from budget_tracker.models.record import DateRange, Record, Snapshot, SnapshotMetadata
from budget_tracker.validation import iso_sort_key


logger = structlog.get_logger(__name__)


REQUIRED_RECORD_FIELDS = ("id", "amount", "details", "date")

# Older snapshots stored the records under the table name
LEGACY_RECORDS_KEY = "spending"


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a 'Z' suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class BackupCodec:
    """Serializes, verifies and parses snapshot documents."""

    def __init__(
        self,
        version: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.version = version or get_settings().backup.format_version
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def compute_metadata(records: list[Record]) -> SnapshotMetadata:
        """Count, total and date range of a record set in a single pass."""
        total = Decimal("0")
        earliest: Optional[str] = None
        latest: Optional[str] = None

        for record in records:
            total += record.amount
            key = iso_sort_key(record.date)
            if earliest is None or key < iso_sort_key(earliest):
                earliest = record.date
            if latest is None or key > iso_sort_key(latest):
                latest = record.date

        return SnapshotMetadata(
            total_records=len(records),
            date_range=DateRange(earliest=earliest or "", latest=latest or ""),
            total_amount=total,
        )

    def serialize(
        self,
        records: list[Record],
        settings: Any = None,
        timestamp: Optional[str] = None,
    ) -> Snapshot:
        """
        Build a snapshot of the given records and settings.

        Args:
            records: Records to include, order preserved
            settings: Opaque settings value (None when there are none)
            timestamp: Creation time; defaults to now

        Returns:
            The snapshot with freshly computed metadata
        """
        return Snapshot(
            version=self.version,
            timestamp=timestamp or format_timestamp(self._clock()),
            records=list(records),
            settings=settings,
            metadata=self.compute_metadata(records),
        )

    def encode(self, snapshot: Snapshot) -> str:
        """Pretty-printed JSON text of a snapshot."""
        return snapshot.model_dump_json(by_alias=True, indent=2)

    def decode(self, text: Union[str, bytes]) -> dict:
        """
        Parse snapshot text into a raw document.

        Raises:
            CorruptBackupError: If the text is not a JSON object
        """
        try:
            document = json.loads(text)
        except (ValueError, TypeError) as e:
            raise CorruptBackupError(f"Backup is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise CorruptBackupError("Backup must be a JSON object")

        if "records" not in document and LEGACY_RECORDS_KEY in document:
            document["records"] = document.pop(LEGACY_RECORDS_KEY)

        return document

    def verify(self, document: Union[dict, Snapshot]) -> bool:
        """
        Check that a document is a restorable backup.

        Requires version and timestamp, a records list, and the four
        record fields non-null on every record. Never raises.
        """
        if isinstance(document, Snapshot):
            document = document.model_dump(by_alias=True)
        if not isinstance(document, dict):
            return False

        if document.get("version") is None or document.get("timestamp") is None:
            logger.warning("backup_verify_failed", reason="missing version or timestamp")
            return False

        records = document.get("records")
        if not isinstance(records, list):
            logger.warning("backup_verify_failed", reason="records is not a list")
            return False

        for index, record in enumerate(records):
            if not isinstance(record, dict) or any(
                record.get(field) is None for field in REQUIRED_RECORD_FIELDS
            ):
                logger.warning("backup_verify_failed", reason="incomplete record", index=index)
                return False

        if document["version"] != self.version:
            logger.warning(
                "backup_version_mismatch",
                found=document["version"],
                expected=self.version,
            )

        metadata = document.get("metadata")
        if isinstance(metadata, dict) and metadata.get("totalRecords") != len(records):
            logger.warning(
                "backup_metadata_mismatch",
                total_records=metadata.get("totalRecords"),
                actual=len(records),
            )

        return True

    @staticmethod
    def validate_records(raw_records: list) -> tuple[list[Record], list[str]]:
        """
        Validate raw records one at a time.

        Returns:
            (valid records in order, one message per rejected record)
        """
        records = []
        rejected = []
        for index, raw in enumerate(raw_records):
            try:
                records.append(Record.model_validate(raw))
            except ValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(part) for part in first["loc"])
                rejected.append(f"Record {index} is invalid ({field}: {first['msg']})")
        return records, rejected

    def is_restorable(self, document: dict) -> bool:
        """verify() plus every record passing model validation."""
        if not self.verify(document):
            return False
        _, rejected = self.validate_records(document["records"])
        if rejected:
            logger.warning("backup_records_invalid", rejected=len(rejected), first=rejected[0])
        return not rejected

    def parse(self, text: Union[str, bytes]) -> tuple[Snapshot, list[str]]:
        """
        Parse and verify snapshot text, keeping the records that validate.

        Returns:
            (snapshot of the valid records, messages for rejected records)

        Raises:
            CorruptBackupError: If the text is not a JSON object
            InvalidBackupError: If verification fails
        """
        document = self.decode(text)
        if not self.verify(document):
            raise InvalidBackupError("Backup failed integrity verification")

        records, rejected = self.validate_records(document["records"])

        try:
            metadata = SnapshotMetadata.model_validate(document.get("metadata"))
        except ValidationError:
            logger.warning("backup_metadata_recomputed", timestamp=str(document["timestamp"]))
            metadata = self.compute_metadata(records)

        snapshot = Snapshot(
            version=str(document["version"]),
            timestamp=str(document["timestamp"]),
            records=records,
            settings=document.get("settings"),
            metadata=metadata,
        )
        return snapshot, rejected

    def deserialize(self, text: Union[str, bytes]) -> Snapshot:
        """
        Parse and verify snapshot text; every record must validate.

        Raises:
            CorruptBackupError: If the text is not a JSON object
            InvalidBackupError: If verification or record validation fails
        """
        snapshot, rejected = self.parse(text)
        if rejected:
            raise InvalidBackupError(rejected[0])
        return snapshot
