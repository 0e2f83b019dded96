"""
Prometheus metrics for transcript sync and ingestion
"""

import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ==============================================================================
# Metrics Definitions
# ==============================================================================

# Sync passes by mode (incremental, full)
transcript_sync_passes_total = Counter(
    'transcript_sync_passes_total',
    'Total number of sync passes started',
    ['mode']
)

transcript_sync_duration_seconds = Histogram(
    'transcript_sync_duration_seconds',
    'Wall time of a full sync pass',
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800]
)

transcript_sync_pages_total = Counter(
    'transcript_sync_pages_total',
    'Transcript listing pages requested'
)

# Per-transcript outcomes
transcript_ingest_success_total = Counter(
    'transcript_ingest_success_total',
    'Total number of transcripts ingested'
)

transcript_ingest_failures_total = Counter(
    'transcript_ingest_failures_total',
    'Total number of transcript failures',
    ['reason']  # fetch_failed, invalid_payload, database_error, timeout, ...
)

transcript_validation_warnings_total = Counter(
    'transcript_validation_warnings_total',
    'Business-rule violations found in ingested transcripts'
)

transcript_ingest_duration_seconds = Histogram(
    'transcript_ingest_duration_seconds',
    'Time spent ingesting one transcript (single transaction)',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10]
)

# Derived rows
transcript_turns_total = Histogram(
    'transcript_turns_total',
    'Dialogue turns per transcript',
    buckets=[0, 5, 10, 20, 50, 100, 200, 500]
)

transcript_events_inferred_total = Counter(
    'transcript_events_inferred_total',
    'Events inferred from transcripts',
    ['event_type']
)


# ==============================================================================
# Metrics Helper Class
# ==============================================================================

class IngestionMetrics:
    """Helper class for recording sync and ingestion metrics"""

    @staticmethod
    def record_sync_pass(full: bool):
        """Record the start of a sync pass"""
        transcript_sync_passes_total.labels(mode="full" if full else "incremental").inc()

    @staticmethod
    def record_page():
        """Record one listing page request"""
        transcript_sync_pages_total.inc()

    @staticmethod
    def record_success():
        """Record successful ingestion"""
        transcript_ingest_success_total.inc()

    @staticmethod
    def record_failure(reason: str):
        """
        Record a per-transcript failure

        Args:
            reason: Error code (e.g., 'fetch_failed', 'database_error')
        """
        transcript_ingest_failures_total.labels(reason=reason).inc()

    @staticmethod
    def record_validation_warnings(count: int):
        """Record business-rule violations of one transcript"""
        if count:
            transcript_validation_warnings_total.inc(count)

    @staticmethod
    def record_transcript_metrics(num_turns: int, event_types):
        """
        Record transcript-level metrics

        Args:
            num_turns: Number of dialogue turns stored
            event_types: Types of the events inferred
        """
        transcript_turns_total.observe(num_turns)
        for event_type in event_types:
            transcript_events_inferred_total.labels(event_type=str(getattr(event_type, "value", event_type))).inc()

    @staticmethod
    @contextmanager
    def time_ingestion():
        """Context manager for timing one transcript ingestion"""
        start = time.time()
        try:
            yield
        finally:
            transcript_ingest_duration_seconds.observe(time.time() - start)

    @staticmethod
    @contextmanager
    def time_sync():
        """Context manager for timing a whole sync pass"""
        start = time.time()
        try:
            yield
        finally:
            transcript_sync_duration_seconds.observe(time.time() - start)


# ==============================================================================
# Prometheus Exporter Setup
# ==============================================================================

def start_metrics_server(port: int = 9090):
    """
    Start Prometheus metrics HTTP server

    Args:
        port: HTTP port to expose metrics (default: 9090)
    """
    from prometheus_client import start_http_server

    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except OSError as e:
        logger.error(f"Failed to start Prometheus metrics server: {e}")
        raise
