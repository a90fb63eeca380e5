from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class Metrics:
    """
    Metrics owns every Prometheus instrument meterwise exposes. One
    instance is created at start-up and handed to the components that
    record into it; tests pass a fresh registry.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._operation_duration: "Histogram" = Histogram(
            "meterwise_operation_duration_seconds",
            "Duration of billing operations",
            ["operation"],
            registry=registry,
        )
        self._credential_lookups: "Counter" = Counter(
            "meterwise_credential_cache_lookups_total",
            "Credential cache lookups by layer and outcome",
            ["layer", "outcome"],
            registry=registry,
        )
        self._identity_requests: "Counter" = Counter(
            "meterwise_identity_requests_total",
            "Token requests sent to the identity provider",
            ["flow", "outcome"],
            registry=registry,
        )
        self._rate_table_fetches: "Counter" = Counter(
            "meterwise_rate_table_fetches_total",
            "Rate tables fetched from the billing API",
            registry=registry,
        )
        self._rated_records: "Counter" = Counter(
            "meterwise_rated_records_total",
            "Utilization records priced by the rating engine",
            registry=registry,
        )
        self._unmatched_meters: "Counter" = Counter(
            "meterwise_unmatched_meters_total",
            "Utilization records dropped because no meter matched",
            registry=registry,
        )
        self._report_errors: "Counter" = Counter(
            "meterwise_report_errors_total",
            "Report cycles that failed, by stage",
            ["stage"],
            registry=registry,
        )
        self._last_report_success: "Gauge" = Gauge(
            "meterwise_last_report_success_timestamp_seconds",
            "Unix timestamp of the last successful report cycle",
            registry=registry,
        )

    def observe_operation(self, operation: "str", duration_seconds: "float") -> "None":
        self._operation_duration.labels(operation=operation).observe(duration_seconds)

    def credential_lookup(self, layer: "str", hit: "bool") -> "None":
        """
        layer is "local" or "distributed".
        """
        self._credential_lookups.labels(
            layer=layer, outcome="hit" if hit else "miss"
        ).inc()

    def identity_request(self, flow: "str", outcome: "str") -> "None":
        self._identity_requests.labels(flow=flow, outcome=outcome).inc()

    def rate_table_fetched(self) -> "None":
        self._rate_table_fetches.inc()

    def record_rated(self) -> "None":
        self._rated_records.inc()

    def meter_unmatched(self) -> "None":
        self._unmatched_meters.inc()

    def inc_report_error(self, stage: "str") -> "None":
        self._report_errors.labels(stage=stage).inc()

    def set_last_report_success(self, timestamp: "float") -> "None":
        self._last_report_success.set(timestamp)
