"""Logger with composable output sinks built on logfire."""

from __future__ import annotations

import contextlib
import os
from abc import abstractmethod
from pathlib import Path
from typing import Any

from opentelemetry.proto.logs.v1 import logs_pb2
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from pydantic import Field, PrivateAttr, model_validator

from vaultreplay.core.base import BaseConfig

_current_logger: Logger | None = None


class _LoggerProxy:
    """Forwards attribute access to the configured logger.

    Before setup_logger() runs, every method is a no-op so modules
    can log at import time or from tests without configuration.
    """
    def __getattr__(self, name):
        if _current_logger is None:
            def _noop(*args, **kwargs):  # noqa: ARG001
                pass
            return _noop
        return getattr(_current_logger, name)

    def __enter__(self):
        if _current_logger is None:
            return self
        return _current_logger.__enter__()

    def __exit__(self, *args):
        if _current_logger is None:
            return False
        return _current_logger.__exit__(*args)


# Imported everywhere as `from vaultreplay.core.log import logger`
logger = _LoggerProxy()


class LevelFilteringExporter(SpanExporter):
    """Span exporter that drops spans below a minimum level."""

    # Level names to OpenTelemetry severity numbers
    _level_thresholds = {
        'spew': logs_pb2.SEVERITY_NUMBER_TRACE,
        'trace': logs_pb2.SEVERITY_NUMBER_TRACE3,
        'debug': logs_pb2.SEVERITY_NUMBER_DEBUG,
        'info': logs_pb2.SEVERITY_NUMBER_INFO,
        'warn': logs_pb2.SEVERITY_NUMBER_WARN,
        'error': logs_pb2.SEVERITY_NUMBER_ERROR,
        'fatal': logs_pb2.SEVERITY_NUMBER_FATAL,
    }

    def __init__(self, exporter: SpanExporter, min_level: str | None):
        self._exporter = exporter
        self._min_severity = self._level_thresholds.get(
            (min_level or 'info').lower(), logs_pb2.SEVERITY_NUMBER_INFO
        )

    @classmethod
    def level_name(cls, level_num: int) -> str:
        """Map a severity number back to the closest level name."""
        for name in ['fatal', 'error', 'warn', 'info', 'debug', 'trace', 'spew']:
            if level_num >= cls._level_thresholds[name]:
                return name
        return "unknown"

    def export(self, spans: list[ReadableSpan]) -> SpanExportResult:
        filtered = [
            span for span in spans
            if (span.attributes or {}).get(
                'logfire.level_num', logs_pb2.SEVERITY_NUMBER_INFO
            ) >= self._min_severity
        ]
        if filtered:
            return self._exporter.export(filtered)
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self._exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._exporter.force_flush(timeout_millis)


class Sink(BaseConfig):
    """Base class for log output sinks.

    Each sink is an independent destination with its own level.
    close() is reached through the BaseCloseable cascade.
    """

    enabled: bool = Field(default=True, description="Enable this sink")
    level: str | None = Field(
        default=None,
        description=(
            "Log level for this sink. If None, inherits Logger.level. "
            "Valid: spew, trace, debug, info, warn, error, fatal"
        )
    )
    escape_special_characters: bool = Field(
        default=False,
        description="Escape newlines/tabs in output"
    )
    format_template: str | None = Field(
        default="{timestamp:%Y-%m-%d %H:%M:%S} {level:<5} {message}",
        description="Format template string (None writes span JSON)"
    )

    _processor: Any = PrivateAttr(default=None)

    @staticmethod
    def _escape_special_chars(text: str) -> str:
        return (text
            .replace('\\', '\\\\')
            .replace('\n', '\\n')
            .replace('\r', '\\r')
            .replace('\t', '\\t')
        )

    @staticmethod
    def _extract_span_data(span) -> dict:
        from datetime import UTC, datetime

        attrs = span.attributes or {}
        filepath = attrs.get("code.filepath", "")
        lineno = attrs.get("code.lineno", "")
        level_num = attrs.get(
            "logfire.level_num", logs_pb2.SEVERITY_NUMBER_INFO
        )
        return {
            'timestamp': datetime.fromtimestamp(span.start_time / 1e9, tz=UTC),
            'level': LevelFilteringExporter.level_name(level_num),
            'message': attrs.get("logfire.msg", span.name),
            'filepath': filepath,
            'lineno': lineno,
            'location': f"{filepath}:{lineno}" if filepath else "",
            'function': attrs.get("code.function", ""),
        }

    def _format_span(self, span) -> str:
        """Render one span as a line using format_template."""
        if not self.format_template:
            return span.to_json() + os.linesep

        data = self._extract_span_data(span)
        if self.escape_special_characters:
            data['message'] = self._escape_special_chars(data['message'])

        try:
            formatted = self.format_template.format(**data)
        except KeyError as e:
            return f"ERROR: Invalid template field {e}\n"

        # Keyword attributes passed to logger calls go after the message
        skip_prefixes = ('otel.', 'telemetry.', 'service.', 'process.',
                         'code.', 'logfire.')
        custom_attrs = {
            key: value
            for key, value in (span.attributes or {}).items()
            if not key.startswith(skip_prefixes)
        }
        if custom_attrs:
            attrs_str = ' '.join(
                f"{k}={v!r}" for k, v in sorted(custom_attrs.items())
            )
            formatted = f"{formatted} | {attrs_str}"

        return formatted + '\n'

    @abstractmethod
    def create_processor(self, log_root: Path, run_name: str):
        """Create the span processor for this sink, or None."""

    def close(self):
        if self._processor:
            with contextlib.suppress(Exception):
                self._processor.shutdown()


class ConsoleSink(Sink):
    """Console output sink."""

    verbose: bool = Field(
        default=False,
        description="Show full span details"
    )
    colors: str = Field(
        default="auto",
        description="Color mode: auto, always, never"
    )

    def create_processor(self, log_root: Path, run_name: str):
        # Console output is configured through logfire.configure()
        return None


class OTLPSink(Sink):
    """OTLP telemetry export sink."""

    enabled: bool = Field(default=False, description="Enable OTLP export")
    endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP gRPC endpoint"
    )
    insecure: bool = Field(
        default=True,
        description="Use insecure connection (no TLS)"
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Optional headers for authentication"
    )

    def create_processor(self, log_root: Path, run_name: str):
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        exporter = OTLPSpanExporter(
            endpoint=self.endpoint,
            insecure=self.insecure,
            headers=self.headers or None,
        )
        if self.level:
            exporter = LevelFilteringExporter(exporter, self.level)
        return BatchSpanProcessor(exporter)


class FileSink(Sink):
    """Plain-text log file sink."""

    enabled: bool = Field(default=False, description="Enable file logging")
    path: str = Field(
        default="{log_root}/{run_name}/vaultreplay.log",
        description="Log file path template"
    )

    _file: Any = PrivateAttr(default=None)

    def create_processor(self, log_root: Path, run_name: str):
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
        )

        log_path = Path(
            self.path.format(log_root=log_root, run_name=run_name)
        )
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Line buffered so a crash loses at most the current line
        self._file = open(log_path, "a", buffering=1, encoding="utf-8")  # noqa: SIM115

        exporter = ConsoleSpanExporter(
            out=self._file,
            formatter=self._format_span
        )
        return BatchSpanProcessor(LevelFilteringExporter(exporter, self.level))

    def close(self):
        # Processor first so pending spans reach the file
        super().close()
        if self._file and not self._file.closed:
            with contextlib.suppress(Exception):
                self._file.flush()
                self._file.close()


class LogfireSink(Sink):
    """Logfire.dev cloud sink."""

    enabled: bool = Field(
        default=False,
        description="Send telemetry to logfire.dev cloud"
    )
    token: str | None = Field(
        default=None,
        description="API token (or use LOGFIRE_TOKEN env var)"
    )

    def create_processor(self, log_root: Path, run_name: str):
        # Configured globally via logfire.configure()
        return None


class Logger(BaseConfig):
    """Logger configuration and runtime instance.

    close() walks every sink through the BaseCloseable cascade, so a
    `with logger:` block is enough to flush and release files.
    """

    level: str = Field(
        default="info",
        description=(
            "Default log level for all sinks. Individual sinks can override. "
            "Valid: spew, trace, debug, info, warn, error, fatal"
        )
    )
    console: ConsoleSink = Field(
        default_factory=ConsoleSink,
        description="Console output configuration"
    )
    otlp: OTLPSink = Field(
        default_factory=OTLPSink,
        description="OTLP telemetry export configuration"
    )
    file: FileSink = Field(
        default_factory=FileSink,
        description="File logging configuration"
    )
    logfire: LogfireSink = Field(
        default_factory=LogfireSink,
        description="Logfire.dev cloud configuration"
    )

    @model_validator(mode='after')
    def _cascade_level_to_sinks(self) -> 'Logger':
        for sink in [self.console, self.file]:
            if sink.level is None:
                sink.level = self.level
        return self

    def setup(self, log_root: Path, run_name: str):
        """Create processors for enabled sinks and configure logfire.

        Args:
            log_root: Root directory for log files
            run_name: Name of the current run (used in paths and
                the service name)
        """
        sinks = [self.console, self.otlp, self.file, self.logfire]
        for sink in sinks:
            if sink.enabled:
                sink._processor = sink.create_processor(log_root, run_name)

        processors = [
            sink._processor for sink in sinks
            if sink.enabled and sink._processor
        ]

        import logfire
        from logfire import ConsoleOptions

        console_config = (
            ConsoleOptions(
                # logfire has no spew level
                min_log_level=(
                    'trace' if self.console.level == 'spew'
                    else self.console.level
                ),
                verbose=self.console.verbose,
                colors=self.console.colors,
                include_timestamps=True,
            )
            if self.console.enabled
            else False
        )

        logfire.configure(
            service_name=f"vaultreplay-{run_name}",
            send_to_logfire=self.logfire.enabled,
            token=self.logfire.token if self.logfire.enabled else None,
            console=console_config,
            additional_span_processors=processors or None,
        )

    def info(self, msg: str, **kwargs):
        import logfire
        logfire.info(msg, **kwargs)

    def debug(self, msg: str, **kwargs):
        import logfire
        logfire.debug(msg, **kwargs)

    def trace(self, msg: str, **kwargs):
        import logfire
        logfire.log(
            level=LevelFilteringExporter._level_thresholds['trace'],
            msg_template=msg,
            attributes=kwargs or None
        )

    def spew(self, msg: str, **kwargs):
        """Log below trace: raw command output and similar noise."""
        import logfire
        logfire.log(
            level=LevelFilteringExporter._level_thresholds['spew'],
            msg_template=msg,
            attributes=kwargs or None
        )

    def warn(self, msg: str, **kwargs):
        import logfire
        logfire.warn(msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        import logfire
        logfire.warn(msg, **kwargs)

    def error(self, msg: str, **kwargs):
        import logfire
        logfire.error(msg, **kwargs)

    def exception(self, msg: str, **kwargs):
        """Log an error with the active exception's traceback."""
        import logfire
        logfire.exception(msg, **kwargs)

    def span(self, msg: str, **kwargs):
        """Span context manager: `with logger.span("name"): ...`"""
        import logfire
        return logfire.span(msg, **kwargs)

    def log(self, level: str, msg: str, **kwargs):
        import logfire
        logfire.log(level, msg, attributes=kwargs or None)


def setup_logger(
    log_root: Path,
    run_name: str,
    level: str = "info",
    console: ConsoleSink | None = None,
    otlp: OTLPSink | None = None,
    file: FileSink | None = None,
    logfire: LogfireSink | None = None,
) -> Logger:
    """Initialize the global logger singleton.

    Called by Config once settings are loaded, and by tests that
    want console-only output.

    Returns:
        Logger: The initialized global logger instance
    """
    global _current_logger

    if _current_logger is not None:
        _current_logger.close()

    _current_logger = Logger(
        level=level,
        console=console or ConsoleSink(),
        otlp=otlp or OTLPSink(),
        file=file or FileSink(),
        logfire=logfire or LogfireSink(),
    )
    _current_logger.setup(log_root, run_name)
    return _current_logger


__all__ = [
    "logger",
    "Logger",
    "LevelFilteringExporter",
    "ConsoleSink",
    "FileSink",
    "OTLPSink",
    "LogfireSink",
    "setup_logger",
]
