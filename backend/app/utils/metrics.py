"""Prometheus metrics for ingestion, retrieval and metering."""

from prometheus_client import Counter, Histogram

provider_latency_ms = Histogram(
    "provider_latency_ms",
    "External AI provider call latency in milliseconds",
    ["operation", "outcome"],
    buckets=[50, 100, 250, 500, 1000, 2000, 5000, 10000, 30000, 60000],
)

provider_errors_total = Counter(
    "provider_errors_total",
    "Total external AI provider errors",
    ["operation", "reason"],
)

ingestions_total = Counter(
    "ingestions_total",
    "Document ingestion runs by outcome",
    ["outcome"],
)

ingested_chunks_total = Counter(
    "ingested_chunks_total",
    "Chunks persisted by successful ingestions",
)

rag_queries_total = Counter(
    "rag_queries_total",
    "RAG queries by outcome",
    ["outcome"],
)

metering_failures_total = Counter(
    "metering_failures_total",
    "Usage metering writes that failed and were dropped",
    ["event_type"],
)


class PrometheusRagMetrics:
    """Prometheus-based metrics implementation."""

    def record_provider_call(self, operation: str, outcome: str, latency_ms: float) -> None:
        """Record an embedding or completion call."""
        provider_latency_ms.labels(operation=operation, outcome=outcome).observe(latency_ms)

    def inc_provider_error(self, operation: str, reason: str) -> None:
        provider_errors_total.labels(operation=operation, reason=reason).inc()

    def inc_ingestion(self, outcome: str, chunks: int = 0) -> None:
        ingestions_total.labels(outcome=outcome).inc()
        if chunks:
            ingested_chunks_total.inc(chunks)

    def inc_query(self, outcome: str) -> None:
        rag_queries_total.labels(outcome=outcome).inc()

    def inc_metering_failure(self, event_type: str) -> None:
        metering_failures_total.labels(event_type=event_type).inc()


metrics = PrometheusRagMetrics()
