"""
PROGRESS MODULE - Broadcast pipeline stage transitions

Two topics:
    - nl-to-sql        (conversion progress)
    - query-execution  (execution progress)

Publishing is fire-and-forget: no subscriber, a slow subscriber or a broken
channel never blocks or fails the pipeline that publishes.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from querylens.core.schemas import Feature, StageEvent, StageStatus

logger = logging.getLogger(__name__)

NL_TO_SQL_TOPIC = "nl-to-sql"
QUERY_EXECUTION_TOPIC = "query-execution"

FEATURE_TOPICS = {
    Feature.NL_TO_SQL: NL_TO_SQL_TOPIC,
    Feature.QUERY_EXECUTION: QUERY_EXECUTION_TOPIC,
}


class Broadcaster:
    """
    In-process publish/subscribe hub.

    Each subscriber owns a bounded queue. When a queue is full the event is
    dropped for that subscriber only.
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Queue `event` for every subscriber of `topic`. Returns how many got it."""
        delivered = 0
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {topic} event for a slow subscriber")
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(topic, set()).add(queue)
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(topic)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[topic]


class ProgressPublisher:
    """Builds StageEvents and hands them to the broadcaster."""

    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster

    def publish(
        self,
        feature: Feature,
        request_id: str,
        stage: str,
        status: StageStatus,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[StageEvent]:
        try:
            event = StageEvent(
                feature=feature,
                request_id=request_id,
                stage=stage,
                status=status,
                message=message,
                data=data,
            )
            self.broadcaster.publish(
                FEATURE_TOPICS[feature], event.model_dump(mode="json", by_alias=True)
            )
            return event
        except Exception as error:
            # Progress is best effort, the pipeline carries on without it
            logger.warning(f"Failed to publish {feature.value} {stage} event: {error}")
            return None


class PipelineLogger:
    """
    Stage tracker for one pipeline run.

    Every entry is timestamped, kept for the run summary, written to the
    module logger and broadcast as a StageEvent.

    Example:
        tracker = PipelineLogger(request_id, Feature.NL_TO_SQL, publisher)
        tracker.progress("RETRIEVING_SCHEMA", "Retrieving relevant schema context")
    """

    def __init__(self, request_id: str, feature: Feature, publisher: ProgressPublisher):
        self.request_id = request_id
        self.feature = feature
        self.publisher = publisher
        self.start_time = datetime.now()
        self.logs: List[Dict[str, Any]] = []

    def log(
        self,
        stage: str,
        message: str,
        status: StageStatus = StageStatus.IN_PROGRESS,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logs.append(
            {
                "timestamp": datetime.now().isoformat(),
                "stage": stage,
                "status": status.value,
                "message": message,
                "elapsed_seconds": (datetime.now() - self.start_time).total_seconds(),
            }
        )

        if status == StageStatus.ERROR:
            logger.error(f"[Request {self.request_id}] {stage}: {message}")
        else:
            logger.info(f"[Request {self.request_id}] {stage}: {message}")

        self.publisher.publish(self.feature, self.request_id, stage, status, message, data)

    def progress(self, stage: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(stage, message, StageStatus.IN_PROGRESS, data)

    def success(self, stage: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(stage, message, StageStatus.SUCCESS, data)

    def error(self, stage: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(stage, message, StageStatus.ERROR, data)

    def get_summary(self) -> Dict[str, Any]:
        end_time = datetime.now()
        return {
            "request_id": self.request_id,
            "feature": self.feature.value,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": (end_time - self.start_time).total_seconds(),
            "logs": self.logs,
        }
