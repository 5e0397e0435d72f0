"""Prometheus metrics middleware and pipeline counters."""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST


http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'HTTP requests currently in progress',
    ['method', 'endpoint']
)

agent_tasks_total = Counter(
    'agent_tasks_total',
    'Executed plan assignments',
    ['agent_id', 'status']
)

plan_executions_total = Counter(
    'plan_executions_total',
    'Execution engine runs',
    ['status']
)

plan_execution_duration_seconds = Histogram(
    'plan_execution_duration_seconds',
    'Execution engine run duration in seconds',
    buckets=[1, 5, 10, 30, 60, 120, 300, 600]
)

quality_evaluations_total = Counter(
    'quality_evaluations_total',
    'Quality gate verdicts',
    ['deliverable_type', 'verified']
)

modifications_total = Counter(
    'modifications_total',
    'Deliverable modifications',
    ['mode', 'outcome']
)

publications_total = Counter(
    'publications_total',
    'Publish attempts by target and strategy',
    ['target', 'strategy']
)

side_effects_total = Counter(
    'side_effects_total',
    'Best-effort side effects',
    ['name', 'outcome']
)

workflow_jobs_total = Counter(
    'workflow_jobs_total',
    'Workflow-mode jobs by kind and terminal status',
    ['kind', 'status']
)


class MetricsMiddleware:
    """Middleware to collect Prometheus metrics."""

    async def __call__(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        """
        Process request and collect metrics.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response from handler
        """
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        # route template keeps label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route")
            labelled = getattr(route, "path", endpoint)
            http_requests_total.labels(method=method, endpoint=labelled, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, endpoint=labelled).observe(time.time() - start_time)
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()

        return response


def get_metrics() -> Response:
    """
    Get Prometheus metrics.

    Returns:
        Response with metrics in Prometheus format
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def track_agent_task(agent_id: str, status: str):
    agent_tasks_total.labels(agent_id=agent_id, status=status).inc()


def track_plan_execution(status: str, duration: float):
    plan_executions_total.labels(status=status).inc()
    plan_execution_duration_seconds.observe(duration)


def track_quality(deliverable_type: str, verified: bool):
    quality_evaluations_total.labels(deliverable_type=deliverable_type, verified=str(verified).lower()).inc()


def track_modification(mode: str, outcome: str):
    modifications_total.labels(mode=mode, outcome=outcome).inc()


def track_publication(target: str, strategy: str):
    publications_total.labels(target=target, strategy=strategy).inc()


def track_side_effect(name: str, outcome: str):
    side_effects_total.labels(name=name, outcome=outcome).inc()


def track_workflow_job(kind: str, status: str):
    workflow_jobs_total.labels(kind=kind, status=status).inc()
