"""Test the metrics and spans recorded by the S3 client."""

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from haos3.clients.http import S3Client
from haos3.configs.observability import ObservabilityConfig
from haos3.observability.setupper import ObservabilitySetupper
from tests.integration.s3.fake_s3 import BUCKET, HTTP_INTERNAL_SERVER_ERROR, FakeS3Service

PART_SIZE = 16
QUIET_CONFIG = ObservabilityConfig(traces=set(), metrics=set(), logs=set())
VALUE = b"Content too long for one chunk"


def metric_totals(reader: InMemoryMetricReader) -> dict[str, int]:
    """Sum the data points of every metric collected by `reader`."""
    totals: dict[str, int] = {}
    data = reader.get_metrics_data()
    if data is None:
        return totals
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                totals[metric.name] = sum(point.value for point in metric.data.data_points)  # type: ignore[union-attr]
    return totals


@pytest.mark.asyncio
async def test_upload_metrics(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that retries, parts and uploaded bytes are counted."""
    reader = InMemoryMetricReader()
    setupper = ObservabilitySetupper(QUIET_CONFIG, service_name="haos3-tests").setup_metrics(reader)

    s3_client.configure(part_size=PART_SIZE)
    fake_s3.fail_next(HTTP_INTERNAL_SERVER_ERROR)
    await s3_client.put("key", VALUE)

    totals = metric_totals(reader)
    assert totals["haos3.retries"] == 1
    assert totals["haos3.parts.uploaded"] == 2  # noqa: PLR2004
    assert totals["haos3.bytes.uploaded"] == len(VALUE)

    setupper.shutdown()


@pytest.mark.asyncio
async def test_operation_spans(s3_client: S3Client) -> None:
    """Test that every client operation runs in a span naming its bucket and key."""
    setupper = ObservabilitySetupper(QUIET_CONFIG, service_name="haos3-tests").setup_tracing()
    tracer_provider = setupper.get_tracer_provider()
    assert tracer_provider is not None
    exporter = InMemorySpanExporter()
    tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))

    await s3_client.put("key", VALUE)
    await s3_client.get("key")
    await s3_client.delete("key")

    spans = exporter.get_finished_spans()
    assert [span.name for span in spans] == ["s3.put", "s3.get", "s3.delete"]
    assert {span.attributes["s3.bucket"] for span in spans} == {BUCKET}  # type: ignore[index]
    assert [span.attributes["s3.method"] for span in spans] == ["PUT", "GET", "DELETE"]  # type: ignore[index]

    setupper.shutdown()
