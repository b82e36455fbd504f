"""
Expiry Worker

Background service that settles rentals nobody polls any more:
- Every few minutes: expire overdue active rentals (and refund them if
  refunds on expiry are enabled)

Read paths apply the same rule lazily, so the worker is optional.
Uses APScheduler for job scheduling.
"""
import asyncio
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from otpdesk.config import settings
from otpdesk.services.settlement_service import SettlementService

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger('expiry_worker')


class ExpiryWorker:
    """Background worker for rental expiry."""

    def __init__(self, database_url: str | None = None):
        self.engine = create_async_engine(database_url or settings.database_url, echo=False)
        self.async_session = async_sessionmaker(
            self.engine, expire_on_commit=False
        )
        self.scheduler = AsyncIOScheduler()

    async def start(self):
        """Start the worker and scheduler."""
        logger.info('Starting Expiry Worker...')

        self.scheduler.add_job(
            self.run_sweep,
            IntervalTrigger(minutes=settings.expiry_sweep_minutes),
            id='rental_expiry',
            name='Rental Expiry Sweep',
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info('Scheduler started. Jobs:')
        for job in self.scheduler.get_jobs():
            logger.info(f'  - {job.name}: next run at {job.next_run_time}')

        # Keep running
        try:
            while True:
                await asyncio.sleep(60)
        except (KeyboardInterrupt, SystemExit):
            logger.info('Shutting down...')
            self.scheduler.shutdown()
            await self.engine.dispose()

    async def run_sweep(self) -> int:
        """Expire overdue rentals once. Returns how many were expired."""
        logger.info('Running expiry sweep...')
        try:
            async with self.async_session() as session:
                async with session.begin():
                    service = SettlementService(session)
                    expired = await service.sweep_expired()

            logger.info(f'Expired {expired} rentals')
            return expired
        except Exception as e:
            logger.error(f'Expiry sweep failed: {e}', exc_info=True)
            raise


async def main():
    """Entry point for the worker."""
    worker = ExpiryWorker()
    await worker.start()


if __name__ == '__main__':
    asyncio.run(main())
