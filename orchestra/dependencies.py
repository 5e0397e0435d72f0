"""FastAPI dependency providers.

Routers never construct services themselves; tests swap any of these through
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from .agents.generation import ContentGenerator, build_content_generator
from .agents.registry import AgentRegistry, get_agent_registry
from .core.config import settings
from .feedback import FeedbackRecorder
from .integrations.webflow import WebflowClient
from .memory.interactions import MemoryStore, SqlMemoryStore
from .planning.planner import Planner
from .predictions.forecasting import PredictionService
from .quality.gate import QualityGate
from .services.modification import ModificationService
from .services.publication import PublicationService
from .services.quality import QualityService
from .storage import DeliverableStore, store
from .workers import job_queue, side_effects
from .workflows.engine import ExecutionEngine
from .workflows.runner import WorkflowRunner


def get_registry() -> AgentRegistry:
    return get_agent_registry()


@lru_cache
def get_generator() -> ContentGenerator:
    return build_content_generator()


def get_store() -> DeliverableStore:
    return store


def get_memory_store() -> MemoryStore:
    return SqlMemoryStore()


def get_webflow_client() -> WebflowClient:
    return WebflowClient()


def get_planner(registry: AgentRegistry = Depends(get_registry)) -> Planner:
    return Planner(registry)


def get_quality_gate(generator: ContentGenerator = Depends(get_generator)) -> QualityGate:
    return QualityGate(
        generator,
        pass_threshold=settings.QUALITY_PASS_THRESHOLD,
        max_attempts=settings.AUTO_FIX_MAX_ATTEMPTS,
    )


def get_executor(
    registry: AgentRegistry = Depends(get_registry),
    generator: ContentGenerator = Depends(get_generator),
    quality_gate: QualityGate = Depends(get_quality_gate),
    deliverables: DeliverableStore = Depends(get_store),
) -> ExecutionEngine:
    return ExecutionEngine(registry, generator, quality_gate, session_factory=deliverables.session_factory)


def get_feedback(memory: MemoryStore = Depends(get_memory_store)) -> FeedbackRecorder:
    return FeedbackRecorder(memory, side_effects)


def get_runner(
    planner: Planner = Depends(get_planner),
    executor: ExecutionEngine = Depends(get_executor),
    deliverables: DeliverableStore = Depends(get_store),
    feedback: FeedbackRecorder = Depends(get_feedback),
) -> WorkflowRunner:
    return WorkflowRunner(planner, executor, deliverables, feedback, job_queue)


def get_modification_service(
    generator: ContentGenerator = Depends(get_generator),
    quality_gate: QualityGate = Depends(get_quality_gate),
    deliverables: DeliverableStore = Depends(get_store),
    memory: MemoryStore = Depends(get_memory_store),
    feedback: FeedbackRecorder = Depends(get_feedback),
    runner: WorkflowRunner = Depends(get_runner),
) -> ModificationService:
    return ModificationService(generator, quality_gate, deliverables, memory, feedback, runner)


def get_publication_service(
    deliverables: DeliverableStore = Depends(get_store),
    feedback: FeedbackRecorder = Depends(get_feedback),
    runner: WorkflowRunner = Depends(get_runner),
    webflow: WebflowClient = Depends(get_webflow_client),
) -> PublicationService:
    return PublicationService(deliverables, feedback, runner, webflow)


def get_quality_service(
    quality_gate: QualityGate = Depends(get_quality_gate),
    deliverables: DeliverableStore = Depends(get_store),
    feedback: FeedbackRecorder = Depends(get_feedback),
) -> QualityService:
    return QualityService(quality_gate, deliverables, feedback)


def get_prediction_service() -> PredictionService:
    return PredictionService()


def build_runner() -> WorkflowRunner:
    """Runner wired with default services, for jobs outside a request."""
    registry = get_registry()
    generator = get_generator()
    quality_gate = get_quality_gate(generator)
    return WorkflowRunner(
        Planner(registry),
        ExecutionEngine(registry, generator, quality_gate, session_factory=store.session_factory),
        store,
        FeedbackRecorder(SqlMemoryStore(), side_effects),
        job_queue,
    )
