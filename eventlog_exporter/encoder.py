"""Parquet encoder: fixed four-column schema, one row group per export batch."""

import logging
import os

import pyarrow as pa
import pyarrow.parquet as pq

from eventlog_exporter.errors import EncodeFailure
from eventlog_exporter.models import ExportBatch

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"
SCHEMA_VERSION_KEY = "eventlog_exporter.schema_version"

# Column order is part of the file contract.
COLUMNS = (
    ("TimeCreated", pa.timestamp("us", tz="UTC")),
    ("Id", pa.int32()),
    ("ProviderName", pa.string()),
    ("Message", pa.string()),
)

COMPRESSION_CODECS = ("snappy", "zstd", "gzip", "lz4", "none")


def build_schema() -> pa.Schema:
    """Build the export schema from the fixed column list. Never inferred from data."""
    return pa.schema(
        [pa.field(name, type_, nullable=False) for name, type_ in COLUMNS],
        metadata={SCHEMA_VERSION_KEY: SCHEMA_VERSION},
    )


def batch_to_table(batch: ExportBatch, schema: pa.Schema | None = None) -> pa.Table:
    """Convert a batch into a record-aligned Arrow table.

    Row i of the batch lands at index i of every column. Unrendered
    messages are exported as empty strings.
    """
    schema = schema or build_schema()
    records = batch.records
    arrays = [
        pa.array([r.timestamp for r in records], type=schema.field("TimeCreated").type),
        pa.array([r.event_id for r in records], type=pa.int32()),
        pa.array([r.provider_name or "" for r in records], type=pa.string()),
        pa.array([r.message if r.message is not None else "" for r in records],
                 type=pa.string()),
    ]
    return pa.Table.from_arrays(arrays, schema=schema)


class ParquetEncoder:
    """Writes an ExportBatch to a self-contained Parquet file."""

    def __init__(self, compression: str = "snappy"):
        if compression not in COMPRESSION_CODECS:
            raise ValueError(f"unsupported compression codec: {compression}")
        self._compression = compression

    @property
    def compression(self) -> str:
        return self._compression

    def write(self, batch: ExportBatch, path: str, previous: str | None = None) -> int:
        """Write the batch to path as exactly one row group. Returns rows written.

        When previous names an existing export, its row groups are copied
        ahead of the new one (append mode). The footer is finalized before
        returning; any failure raises EncodeFailure.
        """
        schema = build_schema()
        try:
            table = batch_to_table(batch, schema)
            carried = self._previous_row_groups(batch.channel, previous, schema)
            with pq.ParquetWriter(path, schema, compression=self._compression) as writer:
                for row_group in carried:
                    writer.write_table(row_group, row_group_size=max(row_group.num_rows, 1))
                writer.write_table(table, row_group_size=max(table.num_rows, 1))
        except (OSError, pa.ArrowException, ValueError, TypeError) as e:
            raise EncodeFailure(batch.channel, f"parquet write to {path} failed: {e}") from e

        logger.debug("%s: wrote %d row(s) to %s (%s)",
                     batch.channel, table.num_rows, path, self._compression)
        return table.num_rows

    @staticmethod
    def _previous_row_groups(channel: str, previous: str | None, schema: pa.Schema) -> list[pa.Table]:
        if not previous or not os.path.exists(previous):
            return []
        try:
            pf = pq.ParquetFile(previous)
            return [
                pf.read_row_group(i).cast(schema)
                for i in range(pf.metadata.num_row_groups)
            ]
        except (OSError, pa.ArrowException, ValueError) as e:
            logger.warning("%s: previous export %s unreadable, starting fresh: %s",
                           channel, previous, e)
            return []
