# main.py
import asyncio
import importlib
import inspect
import signal
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from jobpipe.adapters.counter_store_file import FileCounterStore
from jobpipe.adapters.retry_tenacity import TenacityRetryAdapter
from jobpipe.adapters.web3_chain_adapter import Web3ChainAdapter
from jobpipe.core.config import (
    CoordinatorConfig,
    JobQueueConfig,
    PaymentMonitorConfig,
    SlaConfig,
    StateReductionConfig,
)
from jobpipe.core.exceptions import JobValidationError
from jobpipe.core.logging_config import configure_logging
from jobpipe.core.managers.job_coordinator import JobCoordinator
from jobpipe.core.managers.payment_gate import JobAction, PaymentGatedProcessor
from jobpipe.core.managers.sla_tracker import SlaTracker
from jobpipe.core.managers.state_reducer import StateReducer
from jobpipe.core.managers.transfer_monitor import TransferMonitor
from jobpipe.core.models.job import MarketplaceJob
from jobpipe.core.settings import PipelineSettings, app_settings, logger


# main lives at the outermost layer (not in core)
# Instantiates all the concrete adapters
# Wires dependencies together
# Runs the pipeline until interrupted

def load_object(dotted_path: str) -> Any:
    """Import `package.module:attribute`."""
    module_name, _, attribute = dotted_path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def build_coordinator(
    settings: PipelineSettings,
    action: JobAction,
    chain: Optional[Web3ChainAdapter] = None,
) -> JobCoordinator:
    chain = chain or Web3ChainAdapter(
        str(settings.JOBPIPE_RPC_URL),
        settings.JOBPIPE_TOKEN_ADDRESS,
        request_timeout=settings.JOBPIPE_RPC_TIMEOUT,
    )
    monitor = TransferMonitor(
        chain,
        settings.JOBPIPE_RECIPIENT_ADDRESS,
        config=PaymentMonitorConfig.from_app_settings(settings),
        token_decimals=settings.JOBPIPE_TOKEN_DECIMALS,
        retry_port=TenacityRetryAdapter(attempts=4, wait_initial=0.5, wait_max=4.0),
    )
    processor = PaymentGatedProcessor(
        monitor,
        action,
        expected_amount=settings.JOBPIPE_SERVICE_PRICE,
    )
    sla = SlaTracker(
        SlaConfig.from_app_settings(settings),
        counter_store=FileCounterStore(settings.JOBPIPE_COUNTER_STORE_FILE),
    )
    return JobCoordinator(
        processor,
        queue_config=JobQueueConfig.from_app_settings(settings),
        sla_tracker=sla,
        config=CoordinatorConfig(),
        reducer=StateReducer(StateReductionConfig.from_app_settings(settings)),
    )


def _as_job(raw: Any) -> Any:
    if isinstance(raw, dict):
        try:
            return MarketplaceJob.model_validate(raw)
        except ValidationError as exc:
            raise JobValidationError(
                f"Malformed job entry ({exc.error_count()} validation errors)",
                value=raw,
                job_id=str(raw["id"]) if raw.get("id") is not None else None,
            ) from exc
    if getattr(raw, "id", None) is None:
        raise JobValidationError("Job entry has no id", field="id", value=raw)
    return raw


async def admit_from_source(coordinator: JobCoordinator, source: Callable[[], Any]) -> int:
    """Pull one batch from `source` and admit every well-formed job in it.

    Malformed entries are skipped one by one; an entry carrying an id is
    recorded as a failed job so later polls stay quiet about it.
    """
    jobs: Iterable[Any] = source()
    if inspect.isawaitable(jobs):
        jobs = await jobs

    admitted = 0
    for raw in jobs or []:
        try:
            job = _as_job(raw)
        except JobValidationError as exc:
            if exc.job_id is None:
                logger.error(f"[source:invalid] error={exc.message} entry={raw!r}")
            else:
                coordinator.reject(exc.job_id, exc.message)
            continue
        if coordinator.admit(job):
            admitted += 1
    return admitted


async def poll_job_source(
    coordinator: JobCoordinator,
    source: Callable[[], Any],
    interval: float,
) -> None:
    """Feed the coordinator from `source` (sync or async, returns an iterable of jobs)."""
    while True:
        try:
            admitted = await admit_from_source(coordinator, source)
            if admitted:
                logger.info(f"[source:poll] admitted={admitted}")
        except Exception as exc:
            logger.error(f"[source:poll] failed error={exc}")
        await asyncio.sleep(interval)


async def run(settings: PipelineSettings) -> None:
    if not settings.JOBPIPE_ACTION:
        raise SystemExit("JOBPIPE_ACTION must point to the downstream action ('package.module:attribute')")
    action = load_object(settings.JOBPIPE_ACTION)

    async with Web3ChainAdapter(
        str(settings.JOBPIPE_RPC_URL),
        settings.JOBPIPE_TOKEN_ADDRESS,
        request_timeout=settings.JOBPIPE_RPC_TIMEOUT,
    ) as chain:
        coordinator = build_coordinator(settings, action, chain=chain)
        coordinator.start()

        source_task = None
        if settings.JOBPIPE_JOB_SOURCE:
            source = load_object(settings.JOBPIPE_JOB_SOURCE)
            source_task = asyncio.create_task(
                poll_job_source(coordinator, source, settings.JOBPIPE_SOURCE_POLL_INTERVAL)
            )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        logger.info("[main] pipeline running, waiting for jobs")
        await stop.wait()

        logger.info("[main] shutting down")
        if source_task is not None:
            source_task.cancel()
            await asyncio.gather(source_task, return_exceptions=True)
        await coordinator.shutdown()
        logger.info(f"[main] final status {coordinator.status()}")


def main():
    # Central logging configuration before anything logs
    configure_logging(app_settings.JOBPIPE_LOG_LEVEL)
    app_settings.print_settings(logger)
    asyncio.run(run(app_settings))


if __name__ == "__main__":
    main()
