from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "buddy_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "buddy_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Request defense
SECURITY_REJECTIONS_TOTAL = Counter(
    "buddy_security_rejections_total",
    "Requests rejected by the security gate",
    ["kind"],
)

# Conversation routing
CHAT_ROUTE_TOTAL = Counter(
    "buddy_chat_route_total",
    "Messages answered per cascade stage",
    ["stage"],
)
MODEL_SECONDS = Histogram(
    "buddy_model_seconds",
    "Duration of generative model calls in seconds",
    ["provider", "model"],
)
MODEL_FAILURES_TOTAL = Counter(
    "buddy_model_failures_total",
    "Generative model call failures",
    ["provider", "reason"],
)

# Search augmentation
SEARCH_FAILURES_TOTAL = Counter(
    "buddy_search_failures_total",
    "Search augmentation failures (absorbed)",
    ["reason"],
)
SEARCH_RESULTS = Histogram(
    "buddy_search_results",
    "Number of search results returned per query",
    buckets=(0, 1, 2, 3, 5, 10),
)
