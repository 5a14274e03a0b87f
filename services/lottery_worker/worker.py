"""
Lottery worker service.

Runs a periodic sweep that:

1. Marks published/active elections whose end date has passed as completed
2. Draws winners for completed lotteries set to trigger automatically
3. Deletes API key rate-limit windows older than the retention period

Metrics are exposed on a separate Prometheus port.
"""

import asyncio
import logging
import signal
import sys

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from services.election_api.api_keys import api_key_service
from services.election_api.config import settings
from services.election_api.database import database
from services.election_api.elections import election_service
from services.election_api.errors import AppError
from services.election_api.lottery import lottery_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Prometheus metrics
sweeps_total = Counter(
    'lottery_worker_sweeps_total',
    'Total number of sweeps run',
    ['status']
)

sweep_duration = Histogram(
    'lottery_worker_sweep_duration_seconds',
    'Time spent in one sweep'
)

elections_completed = Counter(
    'lottery_worker_elections_completed_total',
    'Elections marked completed by the worker'
)

auto_draw_failures = Counter(
    'lottery_worker_auto_draw_failures_total',
    'Automatic draws that failed',
    ['error_type']
)

pending_auto_draws = Gauge(
    'lottery_worker_pending_auto_draws',
    'Completed elections waiting for an automatic draw'
)


class LotteryWorker:
    """Periodic election completion and automatic lottery draws."""

    def __init__(self, interval_seconds: int = None):
        self.interval_seconds = interval_seconds or settings.WORKER_INTERVAL_SECONDS
        self.shutdown_event = asyncio.Event()

    def _handle_shutdown(self, signum):
        """Handle graceful shutdown on SIGTERM/SIGINT."""
        logger.info(f"Shutdown signal received: {signum}")
        self.shutdown_event.set()

    async def run_auto_draws(self) -> int:
        """Draw every pending automatic lottery. Returns the number drawn."""
        election_ids = await lottery_service.find_pending_auto_draws()
        pending_auto_draws.set(len(election_ids))

        drawn = 0
        for election_id in election_ids:
            try:
                await lottery_service.auto_trigger(election_id)
                drawn += 1
            except AppError as e:
                # No voters, already drawn by the creator, ...
                auto_draw_failures.labels(error_type=e.code.lower()).inc()
                logger.warning(f"Automatic draw skipped for election {election_id}: {e.message}")
            except Exception as e:
                auto_draw_failures.labels(error_type="internal_error").inc()
                logger.error(f"Automatic draw failed for election {election_id}: {e}", exc_info=True)
        return drawn

    async def sweep(self):
        """Run one pass of every periodic task."""
        with sweep_duration.time():
            completed = await election_service.complete_ended_elections()
            elections_completed.inc(len(completed))

            drawn = await self.run_auto_draws()
            cleaned = await api_key_service.cleanup_rate_limits()

        logger.info(
            f"Sweep finished: completed={len(completed)}, drawn={drawn}, "
            f"rate_limit_rows_removed={cleaned}"
        )

    async def run(self):
        """Run sweeps until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._handle_shutdown, signum)

        await database.initialize()

        logger.info(f"Starting Prometheus metrics server on port {settings.WORKER_METRICS_PORT}")
        start_http_server(settings.WORKER_METRICS_PORT)

        try:
            while not self.shutdown_event.is_set():
                try:
                    await self.sweep()
                    sweeps_total.labels(status='success').inc()
                except Exception as e:
                    sweeps_total.labels(status='error').inc()
                    logger.error(f"Sweep failed: {e}", exc_info=True)

                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            await database.close()
            logger.info("Cleanup complete. Worker shutting down.")


def main():
    """Main entry point."""
    logger.info("=" * 60)
    logger.info("Starting Lottery Worker Service")
    logger.info(f"Interval: {settings.WORKER_INTERVAL_SECONDS}s")
    logger.info(f"PostgreSQL: {settings.POSTGRES_HOST}:{settings.POSTGRES_PORT}")
    logger.info("=" * 60)

    try:
        asyncio.run(LotteryWorker().run())
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
