"""Prometheus metrics for the gift intelligence pipeline."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("giftwise", "Gift intelligence pipeline info")
app_info.info({"version": "0.1.0", "name": "giftwise"})

# Scrape metrics
scrape_requests_total = Counter(
    "giftwise_scrape_requests_total",
    "Total number of outbound scrape attempts",
    ["status"],
)

scrape_errors_total = Counter(
    "giftwise_scrape_errors_total",
    "Total number of failed scrape attempts",
    ["code"],
)

scrape_duration_seconds = Histogram(
    "giftwise_scrape_duration_seconds",
    "Time spent on outbound scrape requests",
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Proxy pool metrics
proxy_health_checks_total = Counter(
    "giftwise_proxy_health_checks_total",
    "Total number of proxy health checks",
    ["result"],
)

proxy_pool_size = Gauge(
    "giftwise_proxy_pool_size",
    "Number of proxies in the pool",
    ["state"],
)

# Rate limiting
rate_limit_rejections_total = Counter(
    "giftwise_rate_limit_rejections_total",
    "Requests rejected by a rate limiter",
    ["limiter", "blocked"],
)

# Cache metrics
cache_lookups_total = Counter(
    "giftwise_cache_lookups_total",
    "Cache lookups by namespace and result",
    ["namespace", "result"],
)

# LLM metrics
llm_calls_total = Counter(
    "giftwise_llm_calls_total",
    "Total number of generative text calls",
    ["status"],
)

# Backup products
backup_source_results_total = Counter(
    "giftwise_backup_source_results_total",
    "Backup product source outcomes",
    ["source", "status"],
)

# Enrichment / analysis
enrichment_results_total = Counter(
    "giftwise_enrichment_results_total",
    "Gift enrichment outcomes",
    ["status"],
)

analysis_confidence = Histogram(
    "giftwise_analysis_confidence",
    "Combined confidence of product analyses",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)


def record_scrape_success(duration: float):
    """Record a successful scrape request."""
    scrape_requests_total.labels(status="success").inc()
    scrape_duration_seconds.observe(duration)


def record_scrape_error(code: str, duration: float):
    """Record a failed scrape request."""
    scrape_requests_total.labels(status="error").inc()
    scrape_errors_total.labels(code=code).inc()
    scrape_duration_seconds.observe(duration)


def record_health_check(success: bool):
    """Record a proxy health check result."""
    proxy_health_checks_total.labels(result="healthy" if success else "unhealthy").inc()


def update_proxy_pool(total: int, available: int):
    """Update proxy pool gauges."""
    proxy_pool_size.labels(state="total").set(total)
    proxy_pool_size.labels(state="available").set(available)


def record_rate_limit_rejection(limiter: str, blocked: bool):
    """Record a rate limiter rejection."""
    rate_limit_rejections_total.labels(limiter=limiter, blocked=str(blocked).lower()).inc()


def record_cache_lookup(namespace: str, hit: bool):
    """Record a cache hit or miss."""
    cache_lookups_total.labels(namespace=namespace, result="hit" if hit else "miss").inc()


def record_llm_call(success: bool):
    """Record a generative text call."""
    llm_calls_total.labels(status="success" if success else "error").inc()


def record_backup_source(source: str, status: str):
    """Record a backup source outcome (hit, empty, error)."""
    backup_source_results_total.labels(source=source, status=status).inc()


def record_enrichment(success: bool):
    """Record a gift enrichment outcome."""
    enrichment_results_total.labels(status="success" if success else "error").inc()
