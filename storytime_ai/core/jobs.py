"""
Background jobs and dispatchers.

Jobs carry their own retry budget (``tries``) and an optional absolute
deadline (``retry_until``). The queue transport is external; a dispatcher is
injected wherever work is deferred. ``InlineDispatcher`` runs jobs in
process, ``RecordingDispatcher`` holds them until ``run_pending``.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .accounting import UsageAccounting

logger = logging.getLogger(__name__)

DEFAULT_QUEUE = "default"
TRACKING_QUEUE = "tracking"


class Job:
    """Unit of deferred work."""

    queue = DEFAULT_QUEUE
    tries = 1

    def retry_until(self) -> Optional[datetime]:
        """Absolute deadline after which the job is abandoned, None for no deadline."""
        return None

    def handle(self) -> None:
        raise NotImplementedError

    def failed(self, exc: BaseException) -> None:
        """Called once when the job gives up."""

    @property
    def name(self) -> str:
        return type(self).__name__


class Dispatcher(Protocol):
    def dispatch(self, job: Job, queue: Optional[str] = None) -> None:
        ...


class InlineDispatcher:
    """Runs each job immediately within its retry budget.

    A job that keeps failing is handed to ``job.failed`` and logged; the
    exception is not re-raised into the dispatching code.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock

    def dispatch(self, job: Job, queue: Optional[str] = None) -> None:
        queue = queue or job.queue
        deadline = job.retry_until()
        attempt = 0
        while True:
            attempt += 1
            try:
                job.handle()
                logger.debug("job=%s queue=%s done attempt=%d", job.name, queue, attempt)
                return
            except Exception as e:
                out_of_tries = attempt >= job.tries
                past_deadline = deadline is not None and self._clock() >= deadline
                if out_of_tries or past_deadline:
                    logger.error(
                        "job=%s queue=%s failed attempts=%d past_deadline=%s error=%s",
                        job.name, queue, attempt, past_deadline, e,
                    )
                    job.failed(e)
                    return
                logger.warning("job=%s queue=%s attempt=%d failed, retrying: %s", job.name, queue, attempt, e)


class RecordingDispatcher:
    """Collects dispatched jobs for later execution."""

    def __init__(self):
        self.jobs: List[Tuple[str, Job]] = []

    def dispatch(self, job: Job, queue: Optional[str] = None) -> None:
        self.jobs.append((queue or job.queue, job))

    def run_pending(self, runner: Optional[InlineDispatcher] = None) -> int:
        """Run and clear every collected job. Returns the number run."""
        runner = runner or InlineDispatcher()
        pending, self.jobs = self.jobs, []
        for queue, job in pending:
            runner.dispatch(job, queue)
        return len(pending)


class TrackRequestJob(Job):
    """Persists the request log entry of one text generation call."""

    queue = TRACKING_QUEUE

    def __init__(
        self,
        accounting: UsageAccounting,
        book_id: Optional[str],
        chapter_id: Optional[str],
        user_id: Optional[str],
        item_type: str,
        request: Optional[Dict[str, Any]],
        response: Dict[str, Any],
        raw_response: Optional[Dict[str, Any]],
        response_status_code: int,
        response_time: float,
        profile_id: Optional[str] = None,
    ):
        self.accounting = accounting
        self.book_id = book_id
        self.chapter_id = chapter_id
        self.user_id = user_id
        self.item_type = item_type
        self.request = request
        self.response = response
        self.raw_response = raw_response
        self.response_status_code = response_status_code
        self.response_time = response_time
        self.profile_id = profile_id

    def handle(self) -> None:
        logger.debug("tracking request item_type=%s", self.item_type)
        data = {
            "user_id": self.user_id,
            "profile_id": self.profile_id,
            "book_id": self.book_id,
            "chapter_id": self.chapter_id,
            "item_type": self.item_type,
            "request": json.dumps(self.request, default=str),
            "response": json.dumps(self.raw_response, default=str),
            "response_time": self.response_time,
            "response_status_code": self.response_status_code,
        }
        data.update(self.accounting.parse_response_for_store(self.response))
        self.accounting.store(data)


class TrackImageRequestJob(Job):
    """Prices and persists the request log entry of one image generation call."""

    queue = TRACKING_QUEUE

    def __init__(
        self,
        accounting: UsageAccounting,
        model: str,
        item_type: str,
        response: Dict[str, Any],
        prompt: str,
        input_images_count: int,
        output_images_count: int,
        response_time: float,
        user_id: Optional[str] = None,
        profile_id: Optional[str] = None,
        book_id: Optional[str] = None,
        chapter_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ):
        self.accounting = accounting
        self.model = model
        self.item_type = item_type
        self.response = response
        self.prompt = prompt
        self.input_images_count = input_images_count
        self.output_images_count = output_images_count
        self.response_time = response_time
        self.user_id = user_id
        self.profile_id = profile_id
        self.book_id = book_id
        self.chapter_id = chapter_id
        self.character_id = character_id

    @property
    def response_status_code(self) -> int:
        return 500 if self.response.get("error") else 200

    def handle(self) -> None:
        data = {
            "user_id": self.user_id,
            "profile_id": self.profile_id,
            "book_id": self.book_id,
            "chapter_id": self.chapter_id,
            "item_type": self.item_type,
            "request": json.dumps({
                "prompt": self.prompt,
                "input_images_count": self.input_images_count,
                "character_id": self.character_id,
            }),
            "response": json.dumps(self.response, default=str),
            "response_time": self.response_time,
            "response_status_code": self.response_status_code,
        }
        data.update(self.accounting.parse_image_response_for_store(
            self.model, self.input_images_count, self.output_images_count,
        ))
        entry = self.accounting.store(data)
        logger.debug("tracked image request item_type=%s total_cost=%s", self.item_type, entry.total_cost)


class GenerationJob(Job):
    """Runs one generation for a content entity with a bounded retry budget.

    When the budget or the deadline runs out, ``on_failed`` is called with a
    human readable message so the entity can be marked failed instead of
    being left in a processing state.
    """

    tries = 3
    timeout = timedelta(minutes=15)

    def __init__(
        self,
        generate: Callable[[], Any],
        on_failed: Callable[[str], None],
        description: str = "content",
        queue: str = DEFAULT_QUEUE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.generate = generate
        self.on_failed = on_failed
        self.description = description
        self.queue = queue
        self._deadline = clock() + self.timeout
        self.result: Any = None

    def retry_until(self) -> Optional[datetime]:
        return self._deadline

    def handle(self) -> None:
        self.result = self.generate()

    def failed(self, exc: BaseException) -> None:
        self.on_failed(f"Failed to generate {self.description}: {exc}")
