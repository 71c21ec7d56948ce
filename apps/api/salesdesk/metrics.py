from __future__ import annotations

import re
from decimal import Decimal

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

crm_lead_conversions_total = Counter(
    "crm_lead_conversions_total",
    "Lead conversion attempts by outcome",
    ["outcome"],
)

crm_deal_stage_transitions_total = Counter(
    "crm_deal_stage_transitions_total",
    "Deal stage transitions",
    ["from_stage", "to_stage"],
)

crm_client_lifetime_value_adjustments_total = Counter(
    "crm_client_lifetime_value_adjustments_total",
    "Relative client lifetime value adjustments by direction",
    ["direction"],
)

crm_access_denied_total = Counter(
    "crm_access_denied_total",
    "Requests denied by the access policy",
    ["resource", "action"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(route_path, str) and route_path:
        return _PATH_PARAM_RE.sub("{id}", route_path)
    return _UUID_RE.sub("{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_conversion(outcome: str) -> None:
    crm_lead_conversions_total.labels(outcome=outcome).inc()


def observe_deal_stage_transition(from_stage: str, to_stage: str) -> None:
    if from_stage != to_stage:
        crm_deal_stage_transitions_total.labels(from_stage=from_stage, to_stage=to_stage).inc()


def observe_lifetime_value_adjustment(delta: Decimal) -> None:
    if delta > 0:
        crm_client_lifetime_value_adjustments_total.labels(direction="increment").inc()
    elif delta < 0:
        crm_client_lifetime_value_adjustments_total.labels(direction="decrement").inc()


def observe_access_denied(resource: str, action: str) -> None:
    crm_access_denied_total.labels(resource=resource, action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
