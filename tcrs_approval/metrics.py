# tcrs_approval/metrics.py
from prometheus_client import Counter, Histogram

# === Core metrics (definitions ONLY here) ===
requests_created_total = Counter(
    "tcrs_requests_created_total", "Approval requests created"
)

request_decisions_total = Counter(
    "tcrs_request_decisions_total", "Approve/reject decisions applied", ["decision"]
)

audit_failures_total = Counter(
    "tcrs_audit_failures_total", "Workflow history writes that did not land", ["reason"]
)

blob_renames_total = Counter(
    "tcrs_blob_renames_total", "Blob rename attempts after request creation", ["kind", "outcome"]
)

request_latency_seconds = Histogram(
    "tcrs_request_latency_seconds", "Request latency", ["path"]
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees "no data"
    for d in ("approved", "rejected"):
        request_decisions_total.labels(decision=d).inc(0)
    for r in ("step_not_found", "insert_failed"):
        audit_failures_total.labels(reason=r).inc(0)
    for k in ("pdf", "excel"):
        for o in ("ok", "failed"):
            blob_renames_total.labels(kind=k, outcome=o).inc(0)
    requests_created_total.inc(0)
