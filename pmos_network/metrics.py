# File: metrics.py

from prometheus_client import Counter, Gauge, Histogram

METRICS = {
    "tenant_networks_total": Gauge("pmos_tenant_networks_total", "Total count of shared tenant networks"),
    "firewall_policies_total": Gauge("pmos_firewall_policies_total", "Total count of firewall policies"),
    "subnets_total": Gauge("pmos_subnets_total", "Total count of deployment subnets"),
    "instances_total": Gauge("pmos_instances_total", "Total count of instances"),
    "reconciliation_latency": Histogram(
        "pmos_reconciliation_duration_ms",
        "Time taken for a deployment reconciliation pass in milliseconds",
        buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000),
    ),
    "reconciliation_actions": Counter(
        "pmos_reconciliation_actions_total",
        "Count of reconciliation actions",
        ["action_type"],
    ),
    "reconciliation_errors": Counter(
        "pmos_reconciliation_errors_total",
        "Count of failed reconciliation passes",
        ["error_code"],
    ),
    "api_requests": Counter(
        "pmos_api_requests_total",
        "Total REST API requests",
        ["method", "endpoint"],
    ),
}
