"""
Call Processor Worker.

Runs the call pipeline for finished calls the API registered but did not
process inline: transcription, appointment extraction, customer matching,
and job creation. Failed calls are retried until they run out of attempts.

Start with:
    python -m call_intel.workers.call_processor
"""

from __future__ import annotations

import asyncio
import signal

from dotenv import load_dotenv
load_dotenv(".env.local")

from call_intel.config import get_settings
from call_intel.db import RecordStore, get_store
from call_intel.errors import CallIntelError
from call_intel.logging_config import generate_trace_id, get_logger, setup_logging, trace_id_var
from call_intel.services.call_pipeline import CallPipeline
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.data_extraction import ExtractionEngine
from call_intel.services.job_orchestrator import JobOrchestrator
from call_intel.services.locks import build_customer_lock
from call_intel.services.notifications import NotificationSink
from call_intel.services.transcription import DeepgramTranscriber
from call_intel.services.ttl_store import get_redis

setup_logging()
logger = get_logger(__name__)
settings = get_settings()

BATCH_SIZE = 10


def build_pipeline(store: RecordStore) -> tuple[CallPipeline, NotificationSink]:
    notifications = NotificationSink(get_redis())
    matcher = CustomerMatcher(store, lock=build_customer_lock(), notifications=notifications)
    jobs = JobOrchestrator(store, matcher, notifications)
    pipeline = CallPipeline(
        store,
        ExtractionEngine(),
        matcher,
        jobs,
        transcriber=DeepgramTranscriber(),
        notifications=notifications,
    )
    return pipeline, notifications


class CallProcessorWorker:
    """
    Polls for calls that still need processing and runs the pipeline.

    Flow:
    1. Ask the store for PROCESSING (or retryable FAILED) calls with no extraction
    2. Run each through CallPipeline.process_call, one at a time
    3. Sleep ``worker_poll_interval`` when there is nothing to do
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        pipeline: CallPipeline | None = None,
        notifications: NotificationSink | None = None,
        poll_interval: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._store = store or get_store()
        if pipeline is None:
            pipeline, notifications = build_pipeline(self._store)
        self._pipeline = pipeline
        self._notifications = notifications
        self._poll_interval = poll_interval or settings.worker_poll_interval
        self._max_retries = settings.max_retry_attempts if max_retries is None else max_retries
        self._running = False
        self._stopping = False

    async def start(self) -> None:
        self._running = True
        logger.info("call_processor_started", poll_interval=self._poll_interval)

        while self._running:
            try:
                processed = await self.process_batch()
                if not processed:
                    await asyncio.sleep(self._poll_interval)
                else:
                    # Failed calls come straight back; space the retries out
                    await asyncio.sleep(1.0)
            except CallIntelError as e:
                logger.error("call_processor_error", error=str(e))
                await asyncio.sleep(self._poll_interval)

    async def stop(self) -> None:
        self._running = False
        self._stopping = True
        if self._notifications is not None:
            await self._notifications.drain()
        logger.info("call_processor_stopped")

    async def process_batch(self) -> int:
        """
        Process up to BATCH_SIZE pending calls.

        Returns the number of calls handed to the pipeline.
        """
        calls = await self._store.list_unprocessed_calls(BATCH_SIZE, self._max_retries)
        for call in calls:
            if self._stopping:
                break
            trace_id_var.set(generate_trace_id())
            try:
                outcome = await self._pipeline.process_call(call["id"])
            except CallIntelError as e:
                logger.error("process_call_error", call_id=call["id"], error=str(e))
                continue
            logger.info(
                "call_processor_outcome",
                call_id=call["id"],
                status=outcome.status.value,
                job_id=outcome.job_id,
            )
        return len(calls)


async def main() -> None:
    worker = CallProcessorWorker()

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("shutdown_signal_received")
        asyncio.ensure_future(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            pass

    try:
        await worker.start()
    except KeyboardInterrupt:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
