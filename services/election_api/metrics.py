"""Prometheus metrics shared by the API and the lottery worker."""
from prometheus_client import Counter, Histogram

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)
request_counter = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)
elections_published = Counter(
    "elections_published_total",
    "Total number of drafts published as elections"
)
publish_errors = Counter(
    "election_publish_errors_total",
    "Total number of failed publish attempts",
    ["error_type"]
)
lottery_draws = Counter(
    "lottery_draws_total",
    "Total number of lottery draws",
    ["trigger"]
)
lottery_winners_selected = Counter(
    "lottery_winners_selected_total",
    "Total number of lottery winners selected"
)
api_key_requests = Counter(
    "api_key_requests_total",
    "Public API requests by API key outcome",
    ["outcome"]
)
