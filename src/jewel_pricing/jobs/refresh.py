"""
Bulk price refresh jobs.

A refresh job reprices every configured product from the current metal rates
and writes the new transacted prices back to the store. Jobs run detached on
the event loop; callers poll the job snapshot and may cancel it. Finished jobs
are evicted by a periodic sweep once the retention window has passed.
"""
import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from ..config.log import job_logger
from ..config.settings import Settings, get_settings
from ..engine.errors import InvalidConfiguration, JobStateError, NotFound, PricingError
from ..engine.models import MetalRates, Product, StoneCatalogEntry
from ..engine.price_calculator import PriceCalculator

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class ProductUpdate:
    """Outcome of repricing one product."""
    product_id: str
    product_title: str = ""
    success: bool = False
    old_price: Optional[float] = None
    new_price: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'product_title': self.product_title,
            'success': self.success,
            'old_price': self.old_price,
            'new_price': self.new_price,
            'error': self.error,
        }


@dataclass
class RefreshJob:
    """Mutable state of one refresh job. Only the orchestrator changes it."""
    id: str
    created_at: datetime
    status: JobStatus = JobStatus.QUEUED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total: int = 0
    processed: int = 0
    success_count: int = 0
    fail_count: int = 0
    progress: int = 0
    eta_seconds: Optional[int] = None
    error: Optional[str] = None
    updates: list[ProductUpdate] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def finish(self, status: JobStatus, at: datetime, error: Optional[str] = None) -> bool:
        """Move to a terminal status. Terminal states are absorbing."""
        if self.is_terminal:
            return False
        self.status = status
        self.completed_at = at
        self.error = error
        return True

    def snapshot(self) -> dict:
        """Point-in-time view for pollers. Per-product updates appear once completed."""
        data = {
            'id': self.id,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'total': self.total,
            'processed': self.processed,
            'success_count': self.success_count,
            'fail_count': self.fail_count,
            'progress': self.progress,
            'eta_seconds': self.eta_seconds,
            'error': self.error,
        }
        if self.status is JobStatus.COMPLETED:
            data['updates'] = [u.to_dict() for u in self.updates]
        return data


class CancellationToken:
    """Cooperative cancellation signal checked by the job between products."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class JobRegistry:
    """In-memory registry of refresh jobs keyed by id."""

    def __init__(self):
        self._jobs: dict[str, RefreshJob] = {}

    def add(self, job: RefreshJob):
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[RefreshJob]:
        return self._jobs.get(job_id)

    def all(self) -> list[RefreshJob]:
        return list(self._jobs.values())

    def evict_expired(self, now: datetime, retention: timedelta) -> list[str]:
        """Drop terminal jobs that finished more than ``retention`` ago."""
        expired = [
            job.id for job in self._jobs.values()
            if job.is_terminal and job.completed_at is not None and now - job.completed_at > retention
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return expired

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"refresh-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class RefreshJobOrchestrator:
    """
    Starts, tracks, cancels and evicts bulk price refresh jobs.

    Every method must be called from the event loop the jobs run on.
    """

    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        registry: Optional[JobRegistry] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.registry = registry or JobRegistry()
        self.clock = clock

        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    async def submit(self) -> str:
        """Register a queued job, start it in the background and return its id."""
        job = RefreshJob(id=new_job_id(), created_at=self.clock())
        token = CancellationToken()

        self.registry.add(job)
        self._tokens[job.id] = token

        task = asyncio.create_task(self._run(job, token))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        job_logger(logger, job.id).info("Refresh prices job queued")
        return job.id

    def get_job(self, job_id: str) -> RefreshJob:
        job = self.registry.get(job_id)
        if job is None:
            raise NotFound('Job', job_id)
        return job

    def get_status(self, job_id: str) -> dict:
        return self.get_job(job_id).snapshot()

    def cancel(self, job_id: str) -> dict:
        """Cancel a queued or processing job; the worker stops before its next product."""
        job = self.get_job(job_id)
        if job.is_terminal:
            raise JobStateError(f"Cannot cancel a {job.status.value} job")

        job.finish(JobStatus.CANCELLED, self.clock())
        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()

        job_logger(logger, job_id).info("Refresh prices job cancelled")
        return job.snapshot()

    async def wait(self, job_id: str) -> dict:
        """Wait for a job's worker to exit and return the final snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_status(job_id)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep(self) -> list[str]:
        """Evict terminal jobs older than the retention window."""
        evicted = self.registry.evict_expired(
            self.clock(), timedelta(seconds=self.settings.job_retention_seconds)
        )
        for job_id in evicted:
            self._tokens.pop(job_id, None)
        if evicted:
            logger.info("Evicted %d expired refresh jobs", len(evicted))
        return evicted

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            self.sweep()

    def start(self):
        """Start the periodic retention sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self):
        """Stop the sweep, cancel unfinished jobs and wait for their workers."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for job in self.registry.all():
            if not job.is_terminal:
                self.cancel(job.id)

        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self, job: RefreshJob, token: CancellationToken):
        log = job_logger(logger, job.id)
        if token.cancelled:
            return

        job.status = JobStatus.PROCESSING
        job.started_at = self.clock()
        log.info("Starting bulk price refresh")

        try:
            rates = await self.store.get_metal_rates()
            if rates is None:
                rates = MetalRates.from_dict(self.settings.default_metal_rates)
            catalog = await self.store.get_stone_catalog()
            calculator = PriceCalculator(rates)

            products = await self._collect_products(token)
            job.total = len(products)
            log.info("Found %d configured products", job.total)

            for product in products:
                if token.cancelled:
                    log.info("Stopping after %d of %d products", job.processed, job.total)
                    return
                update = await self._reprice(product, calculator, catalog, log)
                job.updates.append(update)
                self._record_progress(job, update)
                await asyncio.sleep(0)
        except Exception as e:
            log.exception("Refresh prices job failed")
            job.finish(JobStatus.FAILED, self.clock(), error=str(e))
            return

        if job.finish(JobStatus.COMPLETED, self.clock()):
            job.progress = 100
            job.eta_seconds = 0
            log.info(
                "Refresh complete: %d updated, %d failed", job.success_count, job.fail_count
            )

    async def _collect_products(self, token: CancellationToken) -> list[Product]:
        products: list[Product] = []
        cursor = None
        while not token.cancelled:
            page, page_info = await self.store.list_configured_products(
                cursor, self.settings.refresh_page_size
            )
            products.extend(page)
            if not page_info.has_next_page:
                break
            cursor = page_info.end_cursor
        return products

    async def _reprice(
        self,
        product: Product,
        calculator: PriceCalculator,
        catalog: list[StoneCatalogEntry],
        log: logging.LoggerAdapter,
    ) -> ProductUpdate:
        update = ProductUpdate(
            product_id=product.product_id,
            product_title=product.title,
            old_price=product.current_price,
        )
        try:
            if not product.configured or product.configuration is None:
                raise PricingError("Product not configured")
            if not product.variant_ref:
                raise InvalidConfiguration("Product has no variant to price")

            breakdown = calculator.calculate_price(product.configuration, None, catalog)
            if not math.isfinite(breakdown.final_price) or breakdown.final_price <= 0:
                raise PricingError("Price calculation resulted in invalid price")

            new_price = breakdown.transacted_price
            await self.store.set_product_price(product.product_id, product.variant_ref, new_price)
            update.success = True
            update.new_price = new_price
        except PricingError as e:
            log.warning("Failed to update %s: %s", product.product_id, e)
            update.error = str(e)
        except Exception as e:
            log.exception("Unexpected error updating %s", product.product_id)
            update.error = str(e)
        return update

    def _record_progress(self, job: RefreshJob, update: ProductUpdate):
        job.processed += 1
        if update.success:
            job.success_count += 1
        else:
            job.fail_count += 1

        if job.total:
            job.progress = int(job.processed * 100 / job.total)

        elapsed = (self.clock() - job.started_at).total_seconds()
        if elapsed > 0:
            rate = job.processed / elapsed
            job.eta_seconds = int(round((job.total - job.processed) / rate))
