"""
In-memory singleton that tracks background syllabus generation jobs.

Usage
-----
    from aerotrain.services.generation_manager import generation_manager

    job = generation_manager.start(document_id, options, runner)
    # ... later ...
    current = generation_manager.get_progress(job.generation_id)
    syllabus = generation_manager.get_result(job.generation_id)

``runner`` is an ``async (job) -> result`` callable; it advances the job
through its stages and returns the final syllabus.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from aerotrain.config import settings
from aerotrain.services.errors import JobNotFound, JobNotReady

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage / status enums
# ---------------------------------------------------------------------------

class GenerationStage(str, enum.Enum):
    INITIALIZING = "initializing"
    EXTRACTING_TEXT = "extracting_text"
    ANALYZING_CONTENT = "analyzing_content"
    IDENTIFYING_COMPETENCIES = "identifying_competencies"
    CREATING_MODULES = "creating_modules"
    CREATING_LESSONS = "creating_lessons"
    GENERATING_KNOWLEDGE_GRAPH = "generating_knowledge_graph"
    VALIDATING_REGULATORY_COMPLIANCE = "validating_regulatory_compliance"
    GENERATING_FINAL_SYLLABUS = "generating_final_syllabus"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_PERCENT: Dict[GenerationStage, int] = {
    GenerationStage.INITIALIZING: 0,
    GenerationStage.EXTRACTING_TEXT: 10,
    GenerationStage.ANALYZING_CONTENT: 20,
    GenerationStage.IDENTIFYING_COMPETENCIES: 30,
    GenerationStage.CREATING_MODULES: 40,
    GenerationStage.CREATING_LESSONS: 50,
    GenerationStage.GENERATING_KNOWLEDGE_GRAPH: 60,
    GenerationStage.VALIDATING_REGULATORY_COMPLIANCE: 80,
    GenerationStage.GENERATING_FINAL_SYLLABUS: 90,
    GenerationStage.COMPLETED: 100,
}

_STAGE_ORDER: Dict[GenerationStage, int] = {stage: i for i, stage in enumerate(GenerationStage)}
_TERMINAL = (GenerationStage.COMPLETED, GenerationStage.FAILED)


# ---------------------------------------------------------------------------
# Job (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class GenerationJob:
    document_id: int
    options: Dict[str, Any] = dataclasses.field(default_factory=dict)
    generation_id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    stage: GenerationStage = GenerationStage.INITIALIZING
    percent: int = 0
    message: str = "Queued"
    errors: List[str] = dataclasses.field(default_factory=list)
    started_at: datetime = dataclasses.field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    result: Any = None
    stage_history: List[Tuple[str, int, str]] = dataclasses.field(default_factory=list)
    # Monotonic clock readings for elapsed time and TTL
    started_monotonic: float = dataclasses.field(default_factory=time.monotonic)
    completed_monotonic: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_monotonic if self.completed_monotonic else time.monotonic()
        return round(end - self.started_monotonic, 2)

    @property
    def is_terminal(self) -> bool:
        return self.stage in _TERMINAL

    def advance(self, stage: GenerationStage, message: str = "") -> None:
        """
        Move the job to *stage*.

        Stages only move forward; ``failed`` can be entered from any
        non-terminal stage.  Terminal jobs never change again.
        """
        stage = GenerationStage(stage)
        if self.is_terminal:
            raise ValueError(f"Generation {self.generation_id} already {self.stage.value}")
        if stage != GenerationStage.FAILED and _STAGE_ORDER[stage] < _STAGE_ORDER[self.stage]:
            raise ValueError(f"Cannot move from {self.stage.value} back to {stage.value}")

        self.stage = stage
        self.message = message or stage.value.replace("_", " ").capitalize()
        if stage == GenerationStage.FAILED:
            self.status = JobStatus.FAILED
            self.errors.append(self.message)
        else:
            self.percent = STAGE_PERCENT[stage]
            self.status = JobStatus.COMPLETED if stage == GenerationStage.COMPLETED else JobStatus.IN_PROGRESS
        if stage in _TERMINAL:
            self.completed_at = datetime.now(timezone.utc)
            self.completed_monotonic = time.monotonic()
        self.stage_history.append((stage.value, self.percent, self.message))

    def fail(self, message: str) -> None:
        if not self.is_terminal:
            self.advance(GenerationStage.FAILED, message)

    def to_progress(self) -> Dict[str, Any]:
        return {
            "generation_id": self.generation_id,
            "document_id": self.document_id,
            "status": self.status.value,
            "stage": self.stage.value,
            "percent": self.percent,
            "message": self.message,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "elapsed_seconds": self.elapsed_seconds,
        }


# ---------------------------------------------------------------------------
# Job store
# ---------------------------------------------------------------------------

class JobStore(ABC):
    """Where generation jobs live while they can be polled."""

    @abstractmethod
    def add(self, job: GenerationJob) -> None:
        ...

    @abstractmethod
    def get(self, generation_id: str) -> Optional[GenerationJob]:
        ...

    @abstractmethod
    def evict_expired(self) -> int:
        ...


class InMemoryJobStore(JobStore):
    """
    Dict-backed store.  Finished jobs stay until ``completed + ttl``; running
    jobs are never evicted.  Eviction happens lazily on access.
    """

    def __init__(self, ttl_seconds: Optional[float] = None) -> None:
        self.ttl_seconds = settings.GENERATION_JOB_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._jobs: Dict[str, GenerationJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def _expired(self, job: GenerationJob, now: float) -> bool:
        return job.completed_monotonic is not None and now >= job.completed_monotonic + self.ttl_seconds

    def add(self, job: GenerationJob) -> None:
        self.evict_expired()
        self._jobs[job.generation_id] = job

    def get(self, generation_id: str) -> Optional[GenerationJob]:
        job = self._jobs.get(generation_id)
        if job is not None and self._expired(job, time.monotonic()):
            del self._jobs[generation_id]
            logger.debug("Evicted expired generation %s", generation_id)
            return None
        return job

    def evict_expired(self) -> int:
        now = time.monotonic()
        expired = [gid for gid, job in self._jobs.items() if self._expired(job, now)]
        for gid in expired:
            del self._jobs[gid]
        if expired:
            logger.info("Evicted %d expired generation job(s)", len(expired))
        return len(expired)


# ---------------------------------------------------------------------------
# Generation manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

Runner = Callable[[GenerationJob], Awaitable[Any]]


class GenerationManager:
    """Manages background generation asyncio.Tasks keyed by generation id."""

    _tasks: Dict[str, asyncio.Task] = {}
    _store: JobStore = InMemoryJobStore()

    @classmethod
    def use_store(cls, store: JobStore) -> None:
        cls._store = store

    @classmethod
    def is_running(cls, generation_id: str) -> bool:
        task = cls._tasks.get(generation_id)
        return task is not None and not task.done()

    @classmethod
    def active_count(cls) -> int:
        """Number of generation tasks still running."""
        return sum(1 for task in cls._tasks.values() if not task.done())

    @classmethod
    def get_job(cls, generation_id: str) -> GenerationJob:
        job = cls._store.get(generation_id)
        if job is None:
            raise JobNotFound(f"Generation {generation_id} not found")
        return job

    @classmethod
    def get_progress(cls, generation_id: str) -> Dict[str, Any]:
        return cls.get_job(generation_id).to_progress()

    @classmethod
    def get_result(cls, generation_id: str) -> Any:
        """
        Result of a completed job.

        Raises:
            JobNotFound: unknown or evicted id.
            JobNotReady: the job is still running or has failed.
        """
        job = cls.get_job(generation_id)
        if job.status == JobStatus.COMPLETED:
            return job.result
        if job.status == JobStatus.FAILED:
            raise JobNotReady(generation_id, job.status.value, job.message)
        raise JobNotReady(generation_id, job.status.value)

    @classmethod
    def start(cls, document_id: int, options: Optional[Dict[str, Any]], runner: Runner) -> GenerationJob:
        """
        Register a job and launch *runner* for it in the background.

        Returns the GenerationJob (shared with the running task so fields
        update in real time).
        """
        job = GenerationJob(document_id=document_id, options=dict(options or {}))
        job.stage_history.append((job.stage.value, job.percent, job.message))
        cls._store.add(job)

        async def _wrapper() -> None:
            try:
                job.result = await runner(job)
                if not job.is_terminal:
                    job.advance(GenerationStage.COMPLETED, "Syllabus generation completed")
            except Exception as exc:
                logger.error(
                    "Generation %s failed for document %d: %s",
                    job.generation_id, document_id, exc, exc_info=True,
                )
                job.result = None
                job.fail(f"Failed: {exc}")
            finally:
                if not job.is_terminal:
                    job.fail("Failed: generation ended unexpectedly")

        task = asyncio.create_task(_wrapper())
        cls._tasks[job.generation_id] = task

        # Cleanup reference when done
        task.add_done_callback(lambda _t: cls._cleanup(job.generation_id))

        logger.info("Generation %s started for document %d", job.generation_id, document_id)
        return job

    @classmethod
    async def wait(cls, generation_id: str) -> None:
        """Await a running job's task (no-op once it has finished)."""
        task = cls._tasks.get(generation_id)
        if task is not None:
            await asyncio.shield(task)

    @classmethod
    def _cleanup(cls, generation_id: str) -> None:
        """Remove the task reference (the job is kept for polling)."""
        cls._tasks.pop(generation_id, None)


# Module-level singleton instance
generation_manager = GenerationManager
