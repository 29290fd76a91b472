"""Observability config."""

import os
from typing import Literal, TypeAlias

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ExportTarget: TypeAlias = Literal["console", "otlp"]
Signal: TypeAlias = Literal["traces", "metrics", "logs"]


def default_export_targets() -> set[ExportTarget]:
    """Export over OTLP when an OTLP endpoint is configured, and nowhere otherwise."""
    return {"otlp"} if "OTEL_EXPORTER_OTLP_ENDPOINT" in os.environ else set()


class ObservabilityConfig(BaseSettings):
    """Where the spans, metrics and logs of the S3 client go.

    This config is used to configure `haos3.observability.setupper.ObservabilitySetupper`.
    Every signal names the exporters it is sent to, e.g. `HAOS3_TRACES='["console", "otlp"]'`.

    Attributes:
        service_namespace (str): The namespace of the service. Defaults to "haos3".
        traces (set[ExportTarget]): Exporters of the `s3.*` operation spans.
        metrics (set[ExportTarget]): Exporters of the `haos3.*` counters.
        logs (set[ExportTarget]): Exporters of the log records.
            All three default to OTLP when "OTEL_EXPORTER_OTLP_ENDPOINT" is set, and to none otherwise.
        quiet_loggers (tuple[str, ...]): Loggers raised to WARNING when the transport is instrumented,
            so a line per HTTP request is not logged next to the client's own logs.
        log_format (str): Format of the console log handler.

    """

    model_config = SettingsConfigDict(env_prefix="HAOS3_")

    service_namespace: str = "haos3"

    traces: set[ExportTarget] = Field(default_factory=default_export_targets, description="Span exporters.")
    metrics: set[ExportTarget] = Field(default_factory=default_export_targets, description="Metric exporters.")
    logs: set[ExportTarget] = Field(default_factory=default_export_targets, description="Log exporters.")

    quiet_loggers: tuple[str, ...] = Field(
        default=("httpx", "httpcore"),
        description="Loggers raised to WARNING when the transport is instrumented.",
    )

    log_format: str = Field(
        default="%(asctime)s %(levelname)s %(name)s %(message)s",
        description="Format of the console log handler.",
    )

    def exports(self, signal: Signal, target: ExportTarget) -> bool:
        """Tell whether `signal` is sent to the `target` exporter."""
        targets: set[ExportTarget] = getattr(self, signal)
        return target in targets
