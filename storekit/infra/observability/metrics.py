from prometheus_client import Counter, Histogram

# Low-cardinality labels only: operation names, never bucket names or keys
OPERATIONS = Counter(
    "storage_operations_total",
    "Total object storage operations",
    ["operation", "status"],
)

LATENCY = Histogram(
    "storage_operation_duration_seconds",
    "Object storage operation latency in seconds",
    ["operation"],
)

TRANSFERRED_BYTES = Counter(
    "storage_transferred_bytes_total",
    "Bytes moved to or from object storage",
    ["direction"],
)


def record_operation(operation: str, status: int, elapsed: float) -> None:
    OPERATIONS.labels(operation=operation, status=str(status)).inc()
    LATENCY.labels(operation=operation).observe(elapsed)


def record_transfer(direction: str, size_bytes: int) -> None:
    if size_bytes > 0:
        TRANSFERRED_BYTES.labels(direction=direction).inc(size_bytes)
