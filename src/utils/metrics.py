"""
Prometheus metrics collection.
"""
from prometheus_client import Counter, Histogram, CollectorRegistry

# Create a custom registry
registry = CollectorRegistry()

# Turn metrics
turn_count = Counter(
    "grounding_turns_total",
    "Total orchestrator turns",
    ["outcome"],
    registry=registry,
)

turn_duration = Histogram(
    "grounding_turn_duration_seconds",
    "Orchestrator turn duration in seconds",
    registry=registry,
)

# Tool call metrics
tool_call_count = Counter(
    "grounding_tool_calls_total",
    "Tool calls proposed by the model",
    ["tool", "verdict"],
    registry=registry,
)

validation_confidence = Histogram(
    "grounding_validation_confidence",
    "Parameter validation confidence",
    ["tool"],
    buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
    registry=registry,
)

# Error metrics
llm_error_count = Counter(
    "grounding_llm_errors_total",
    "Failed model round-trips",
    ["category"],
    registry=registry,
)

# HTTP metrics
http_request_count = Counter(
    "grounding_http_requests_total",
    "HTTP requests served",
    ["method", "route", "status"],
    registry=registry,
)
