from prometheus_client import Counter, Histogram

status_transitions_total = Counter(
    "workshop_status_transitions_total", "Applied status transitions", ["entity", "status"]
)
invoices_created_total = Counter("workshop_invoices_created_total", "Invoices created")
payments_total = Counter("workshop_payments_total", "Payments recorded", ["method"])
stock_adjustments_total = Counter(
    "workshop_stock_adjustments_total", "Stock adjustments applied", ["type"]
)
request_duration = Histogram(
    "workshop_request_duration_seconds", "HTTP request duration",
    ["method", "route"], buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)
