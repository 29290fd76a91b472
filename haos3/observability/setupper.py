"""Observability setup for applications using the S3 client.

The client itself only talks to the OpenTelemetry API: `S3Client` operations
open spans, and the retry and upload code add to the `haos3.*` counters. Until
a provider is installed these are no-ops. `ObservabilitySetupper` installs the
providers and routes them to the exporters enabled in `ObservabilityConfig`.
"""

import logging
import uuid
from collections.abc import Callable
from typing import Self, TypeVar

from opentelemetry import _logs as logs
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogExporter, LogExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_INSTANCE_ID, SERVICE_NAME, SERVICE_NAMESPACE, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from haos3.configs.observability import ObservabilityConfig, Signal
from haos3.transport.streaming import HttpxTransport

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _enabled_exporters(
    config: ObservabilityConfig,
    signal: Signal,
    *,
    console_exporter: Callable[[], E],
    otel_exporter: Callable[[], E],
) -> list[E]:
    exporters = []
    if config.exports(signal, "console"):
        exporters.append(console_exporter())
        logger.info("Enabled console %s exporter", signal)
    if config.exports(signal, "otlp"):
        exporters.append(otel_exporter())
        logger.info("Enabled OTLP %s exporter", signal)
    return exporters


class ObservabilitySetupper:
    """Observability setupper.

    Every `setup_*` and `instrument_*` method returns the setupper, so calls chain:

        ObservabilitySetupper(service_name="uploader").setup_logging().setup_tracing().setup_metrics()
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        service_name: str | None = None,
    ) -> None:
        """Initialize the observability setupper.

        Args:
            config: The observability config.
            If None, the config is read from the `HAOS3_` environment variables.
            See `haos3.configs.observability.ObservabilityConfig` for more details.
            service_name: The name of the service to create the resource with.
            The resource itself can be overwritten with the `ObservabilitySetupper.with_resource` method.

        """
        self._config = config or ObservabilityConfig()

        attributes: dict[str, str] = {SERVICE_INSTANCE_ID: str(uuid.uuid4())}
        if self._config.service_namespace:
            attributes[SERVICE_NAMESPACE] = self._config.service_namespace
        if service_name:
            attributes[SERVICE_NAME] = service_name
        self._resource = Resource.create(attributes=attributes)

        self._logger_provider: LoggerProvider | None = None
        self._tracer_provider: TracerProvider | None = None
        self._meter_provider: MeterProvider | None = None

    def instrument_transport(self, transport: HttpxTransport | None = None) -> Self:
        """Give every S3 HTTP request a client span.

        Args:
            transport: Only instrument the client of this transport.
                If None, every httpx client of the process is instrumented.

        """
        if transport is None:
            HTTPXClientInstrumentor().instrument()
            logger.info("httpx has been instrumented")
        else:
            HTTPXClientInstrumentor.instrument_client(transport.client)
            logger.info("S3 transport has been instrumented")

        for name in self._config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)

        return self

    def with_resource(self, resource: Resource) -> Self:
        """Replace the resource the providers are created with.

        Args:
            resource: See `opentelemetry.sdk.resources.Resource` for more details.

        """
        self._resource = resource
        return self

    def get_resource(self) -> Resource:
        """Get the resource the providers are created with."""
        return self._resource

    def setup_logging(self, level: int = logging.INFO, formatter: logging.Formatter | None = None) -> Self:
        """Route the standard library logging to the console and the enabled exporters.

        The root logger's handlers are replaced by a console handler and an
        OpenTelemetry handler, and its level is set to `level`.

        Args:
            level: The level of the root logger.
            formatter: The formatter of the console handler.
                Defaults to a `logging.Formatter` with the configured `log_format`.

        """
        LoggingInstrumentor().instrument()

        logger_provider = LoggerProvider(resource=self._resource)
        exporters: list[LogExporter] = _enabled_exporters(
            self._config,
            "logs",
            console_exporter=ConsoleLogExporter,
            otel_exporter=OTLPLogExporter,
        )
        for exporter in exporters:
            logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
        logs.set_logger_provider(logger_provider)
        self._logger_provider = logger_provider

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter or logging.Formatter(self._config.log_format))

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.addHandler(console_handler)
        root_logger.addHandler(LoggingHandler(logger_provider=logger_provider))
        root_logger.setLevel(level)

        logger.info("Logging has been setup")

        return self

    def get_logger_provider(self) -> LoggerProvider | None:
        """Get the logger provider, or None if logging has not been setup."""
        return self._logger_provider

    def setup_tracing(self) -> Self:
        """Install a tracer provider, so the `s3.*` operation spans are exported."""
        tracer_provider = TracerProvider(resource=self._resource)
        exporters: list[SpanExporter] = _enabled_exporters(
            self._config,
            "traces",
            console_exporter=ConsoleSpanExporter,
            otel_exporter=OTLPSpanExporter,
        )
        for exporter in exporters:
            tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(tracer_provider)
        self._tracer_provider = tracer_provider

        logger.info("Tracing has been setup")

        return self

    def get_tracer_provider(self) -> TracerProvider | None:
        """Get the tracer provider, or None if tracing has not been setup."""
        return self._tracer_provider

    def setup_metrics(self, *extra_readers: MetricReader) -> Self:
        """Install a meter provider for the `haos3.retries`, `haos3.bytes.uploaded` and `haos3.parts.uploaded` counters.

        Args:
            *extra_readers: Readers registered next to the enabled exporters,
                e.g. an `InMemoryMetricReader` or a Prometheus reader.

        """
        exporters: list[MetricExporter] = _enabled_exporters(
            self._config,
            "metrics",
            console_exporter=ConsoleMetricExporter,
            otel_exporter=OTLPMetricExporter,
        )
        readers = [*extra_readers, *(PeriodicExportingMetricReader(exporter) for exporter in exporters)]

        meter_provider = MeterProvider(resource=self._resource, metric_readers=readers)
        metrics.set_meter_provider(meter_provider)
        self._meter_provider = meter_provider

        logger.info("Metrics have been setup")

        return self

    def get_meter_provider(self) -> MeterProvider | None:
        """Get the meter provider, or None if metrics have not been setup."""
        return self._meter_provider

    def shutdown(self) -> None:
        """Flush and shut down the providers that have been setup."""
        for provider in (self._tracer_provider, self._meter_provider, self._logger_provider):
            if provider is not None:
                provider.shutdown()

        logger.info("Observability has been shut down")
