"""Source-side ingestion: raw delimited rows in, typed MessageBox messages out.

Flow for one file:
1. read the header row and data rows (stdlib ``csv``)
2. infer a column schema from the first ``INFERENCE_SAMPLE_SIZE`` rows
3. normalize every row under ``VALIDATION_POLICY``
4. publish each accepted record as its own message

Rejected records are counted in ``records_rejected_total`` and reported in
``IngestReport.errors``; they never reach the MessageBox. Disabling the
source instance stops the ingestion at the next row (``IngestReport.cancelled``).
A ``ProductionError`` stops the ingestion and propagates to the caller.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional, Sequence

from eai_broker.config import Settings, ValidationPolicy
from eai_broker.errors import AdapterInstanceDisabledError, RecordValidationError
from eai_broker.message_box import MessageBox
from eai_broker.metrics import RECORDS_REJECTED_TOTAL
from eai_broker.models import ProducerIdentity
from eai_broker.normalization import RecordNormalizer
from eai_broker.type_inference import ColumnTypeInfo, TypeInferenceEngine


logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    interface_name: str
    rows_read: int = 0
    message_ids: list[uuid.UUID] = field(default_factory=list)
    rejected: int = 0
    nulled_fields: int = 0
    errors: list[str] = field(default_factory=list)
    schema: dict[str, ColumnTypeInfo] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def published(self) -> int:
        return len(self.message_ids)


def read_delimited(path: str, delimiter: str = ",") -> tuple[list[str], list[list[str]]]:
    """Return ``(headers, rows)``; blank lines are skipped and headers trimmed."""
    with open(path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.reader(fh, delimiter=delimiter)
        lines = [row for row in reader if any(cell.strip() for cell in row)]
    if not lines:
        return [], []
    headers = [h.strip() for h in lines[0]]
    return headers, lines[1:]


async def ingest_rows(
    box: MessageBox,
    interface_name: str,
    producer: ProducerIdentity,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    policy: Optional[ValidationPolicy] = None,
    sample_size: Optional[int] = None,
    settings: Settings | None = None,
) -> IngestReport:
    settings = settings or box.settings
    report = IngestReport(interface_name=interface_name, rows_read=len(rows))
    if not headers:
        return report

    report.schema = TypeInferenceEngine().infer_schema(
        headers, rows, sample_size or settings.inference_sample_size
    )
    normalizer = RecordNormalizer(report.schema, policy or settings.validation_policy)
    log_extra = {"interface": interface_name, "instance_guid": producer.instance_guid}

    for row_number, row in enumerate(rows, start=1):
        raw = {h: (row[i] if i < len(row) else "") for i, h in enumerate(headers)}
        try:
            normalized = normalizer.normalize(raw, row_number=row_number)
        except RecordValidationError as exc:
            report.rejected += 1
            report.errors.append(str(exc))
            RECORDS_REJECTED_TOTAL.labels(interface=interface_name).inc()
            logger.warning("%s", exc, extra=log_extra)
            continue
        try:
            message_id = await box.publish(interface_name, producer, headers, report.schema, normalized.values)
        except AdapterInstanceDisabledError as exc:
            # Source disabled mid-file; rows already published stay
            report.cancelled = True
            report.errors.append(str(exc))
            logger.warning("ingestion on %s stopped at row %d: %s", interface_name, row_number, exc, extra=log_extra)
            break
        report.message_ids.append(message_id)
        report.nulled_fields += len(normalized.nulled_fields)

    logger.info(
        "ingested %d row(s) on %s: published=%d rejected=%d",
        report.rows_read,
        interface_name,
        report.published,
        report.rejected,
        extra=log_extra,
    )
    return report


async def ingest_csv(
    path: str,
    interface_name: str,
    producer: ProducerIdentity,
    *,
    box: MessageBox | None = None,
    delimiter: str = ",",
    policy: Optional[ValidationPolicy] = None,
    sample_size: Optional[int] = None,
) -> IngestReport:
    """Read a delimited file and publish its rows on ``interface_name``."""
    box = box or MessageBox()
    headers, rows = await asyncio.to_thread(read_delimited, path, delimiter)
    return await ingest_rows(
        box, interface_name, producer, headers, rows, policy=policy, sample_size=sample_size
    )
