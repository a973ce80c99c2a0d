# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Logging and metrics configuration"""

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class ImporterMonitoring:
    """Prometheus metric helpers for importer read endpoints."""

    BATCH_LIST_COUNTER = Counter(
        "importer_batches_list_requests_total",
        "Total importer batch history API requests.",
        labelnames=("status",),
    )
    BATCH_LIST_LATENCY = Histogram(
        "importer_batches_list_request_seconds",
        "Latency histogram for importer batch history API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )
    BATCH_LIST_RESULT_SIZE = Histogram(
        "importer_batches_list_result_size",
        "Number of batches returned by the history endpoint.",
        labelnames=("status",),
        buckets=(0, 1, 5, 10, 25, 50, 100),
    )

    BATCH_DETAIL_COUNTER = Counter(
        "importer_batch_detail_requests_total",
        "Total importer batch detail API requests.",
        labelnames=("status",),
    )
    BATCH_DETAIL_LATENCY = Histogram(
        "importer_batch_detail_request_seconds",
        "Latency histogram for importer batch detail API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    PREVIEW_LATENCY = Histogram(
        "importer_preview_request_seconds",
        "Latency histogram for importer preview API.",
        labelnames=("status",),
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    )

    @classmethod
    def record_batch_list(cls, *, duration_seconds: float, status: str, result_count: int):
        cls.BATCH_LIST_COUNTER.labels(status=status).inc()
        cls.BATCH_LIST_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
        cls.BATCH_LIST_RESULT_SIZE.labels(status=status).observe(float(max(result_count, 0)))

    @classmethod
    def record_batch_detail(cls, *, duration_seconds: float, status: str):
        cls.BATCH_DETAIL_COUNTER.labels(status=status).inc()
        cls.BATCH_DETAIL_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_preview(cls, *, duration_seconds: float, status: str):
        cls.PREVIEW_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
