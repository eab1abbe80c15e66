"""
Sparkwatch: Flashnet swap and holder-flow monitor for Spark

Main entry point for the application.
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from storage.state_store import StateStore, create_state_store
from storage.token_lists import TickerRegistry, TokenListStore
from stream.flashnet import FlashnetClient
from stream.poller import SwapPoller
from enrichment.luminex import LuminexClient
from detection.flow import FlowAggregator, render_report
from detection.holders import HolderReconciler
from detection.hot_tokens import HotTokenDetector
from alerting.dispatcher import NotificationDispatcher, load_sinks
from core.auth import CredentialProvider
from core.processor import SwapProcessor
from core.monitoring import MetricsCollector, HealthChecker
from models.events import ReportEvent

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

logger = logging.getLogger("sparkwatch")

CREDENTIAL_CHECK_INTERVAL = 300
STATS_INTERVAL = 60


def seconds_until(hhmm: str, now: datetime) -> float:
    """Seconds from `now` (tz-aware) to the next HH:MM in the same timezone."""
    hour, _, minute = hhmm.partition(":")
    target = now.replace(hour=int(hour), minute=int(minute or 0), second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class Application:
    """Main application class orchestrating all components."""

    def __init__(self, with_api: bool = False):
        self.with_api = with_api
        self._running = False
        self._stopping = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.metrics: Optional[MetricsCollector] = None
        self.store: Optional[StateStore] = None
        self.credentials: Optional[CredentialProvider] = None
        self.flashnet: Optional[FlashnetClient] = None
        self.luminex: Optional[LuminexClient] = None
        self.token_lists: Optional[TokenListStore] = None
        self.registry: Optional[TickerRegistry] = None
        self.flow: Optional[FlowAggregator] = None
        self.reconciler: Optional[HolderReconciler] = None
        self.poller: Optional[SwapPoller] = None
        self.hot_detector: Optional[HotTokenDetector] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.processor: Optional[SwapProcessor] = None
        self.health_checker: Optional[HealthChecker] = None

        # Tasks
        self._tasks = []

    async def start(self):
        """Build and start every component."""
        logger.info("Starting Sparkwatch...")

        self.metrics = MetricsCollector()

        logger.info(f"Opening state store ({settings.state_backend})...")
        self.store = create_state_store()
        await self.store.start()

        self.credentials = CredentialProvider()
        if not self.credentials.is_valid():
            logger.warning("Flashnet credential missing or expired, calls go unauthenticated")

        self.flashnet = FlashnetClient(credentials=self.credentials)
        await self.flashnet.start()

        self.luminex = LuminexClient()
        await self.luminex.start()

        self.token_lists = TokenListStore(self.store)
        self.registry = TickerRegistry(self.store)

        self.flow = FlowAggregator(self.store)
        self.reconciler = HolderReconciler(self.store, self.luminex, self.flow)
        logger.info(f"Tracking holders of: {', '.join(self.reconciler.tickers) or 'none'}")

        self.poller = SwapPoller(self.flashnet, self.store)
        await self.poller.load()

        self.hot_detector = HotTokenDetector(self.flashnet, self.token_lists)

        sinks = load_sinks()
        self.dispatcher = NotificationDispatcher(
            sinks,
            self.token_lists,
            luminex=self.luminex,
            flashnet=self.flashnet,
        )
        await self.dispatcher.start()

        self.processor = SwapProcessor(
            poller=self.poller,
            reconciler=self.reconciler,
            dispatcher=self.dispatcher,
            luminex=self.luminex,
            registry=self.registry,
            metrics=self.metrics,
        )

        self.health_checker = HealthChecker(
            self.metrics,
            breakers=[self.flashnet.http.breaker, self.luminex.http.breaker],
            credentials=self.credentials,
            max_poll_age=max(60.0, settings.swap_poll_interval_seconds * 6),
        )

        if self.with_api:
            from api import deps

            deps.bind(
                store=self.store,
                token_lists=self.token_lists,
                registry=self.registry,
                flow=self.flow,
                reconciler=self.reconciler,
                metrics=self.metrics,
                health=self.health_checker,
                stats_provider=self.get_stats,
                flashnet=self.flashnet,
            )

        self._running = True
        logger.info("Sparkwatch started successfully!")

    async def stop(self):
        """Stop all components gracefully."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("Stopping Sparkwatch...")
        self._running = False
        self._shutdown_event.set()

        # Cancel all tasks
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self.with_api:
            from api import deps
            deps.unbind()

        if self.dispatcher:
            await self.dispatcher.stop()

        if self.luminex:
            await self.luminex.stop()

        if self.flashnet:
            await self.flashnet.stop()

        if self.store:
            await self.store.stop()

        logger.info("Sparkwatch stopped.")

    async def run(self):
        """Run the periodic tasks until shutdown."""
        self._tasks = [
            asyncio.create_task(self._run_swap_loop()),
            asyncio.create_task(self._run_hot_token_loop()),
            asyncio.create_task(self._run_sweep_loop()),
            asyncio.create_task(self._run_daily_report_loop()),
            asyncio.create_task(self._run_credential_loop()),
            asyncio.create_task(self._run_stats_loop()),
            asyncio.create_task(self.health_checker.health_check_loop()),
        ]

        if self.with_api:
            from api.server import run_server
            self._tasks.append(asyncio.create_task(run_server()))

        logger.info(f"Started {len(self._tasks)} tasks")
        await self._shutdown_event.wait()

    def get_stats(self) -> dict:
        """Per-component statistics for the stats log and the API."""
        return {
            "processor": self.processor.get_stats(),
            "hot_tokens": self.hot_detector.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "flow": self.flow.get_stats(),
            "flashnet": self.flashnet.get_stats(),
            "luminex": self.luminex.get_stats(),
        }

    async def _run_swap_loop(self):
        """Poll the swap feed and process new swaps."""
        logger.info(f"Starting swap loop ({settings.swap_poll_interval_seconds}s interval)...")

        while self._running:
            try:
                events = await self.processor.run_cycle()
                if events:
                    logger.info(f"Processed {len(events)} new swaps")
                await asyncio.sleep(settings.swap_poll_interval_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Swap loop error: {e}")
                await asyncio.sleep(settings.swap_poll_interval_seconds)

    async def check_hot_tokens(self):
        """Notify sinks of hot pools; a pool cools down only once a sink got it."""
        for result in await self.hot_detector.detect():
            self.metrics.record_hot_token()
            delivered = await self.dispatcher.dispatch(result.to_event())
            for sink, ok in delivered.items():
                self.metrics.record_notification(sink, ok)
            if any(delivered.values()):
                self.hot_detector.mark_reported(result.pool_id)
            elif delivered:
                logger.warning(f"Hot pool {result.pool_id[:12]} failed on every sink, will retry")

    async def _run_hot_token_loop(self):
        """Detect hot pools and notify subscribed sinks."""
        logger.info(f"Starting hot token loop ({settings.hot_check_interval_seconds}s interval)...")

        while self._running:
            try:
                await asyncio.sleep(settings.hot_check_interval_seconds)
                await self.check_hot_tokens()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Hot token loop error: {e}")

    async def _run_sweep_loop(self):
        """Full holder balance sweep: forced at startup, then periodic."""
        logger.info(f"Starting holder sweep loop ({settings.holder_sweep_interval_seconds}s interval)...")
        force = True

        while self._running:
            try:
                results = await self.reconciler.sweep_all(force=force)
                force = False
                for ticker, result in results.items():
                    if not result.skipped:
                        logger.info(
                            f"Sweep {ticker}: checked {result.checked}, failed {result.failed}, "
                            f"{len(result.transitions)} transitions"
                        )
                    for transition in result.transitions:
                        self.metrics.record_transition(ticker, transition.action.value)

                await asyncio.sleep(settings.holder_sweep_interval_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sweep loop error: {e}")
                await asyncio.sleep(60)

    async def send_daily_reports(self, now: datetime):
        """Recompute and send the flow report of `now`'s date for every tracked ticker."""
        day = now.strftime("%Y-%m-%d")
        only = [settings.report_sink] if settings.report_sink else None

        for ticker in sorted(self.flow.tickers):
            try:
                flow = await self.flow.recompute_for_date(ticker, day)
                event = ReportEvent(text=render_report(ticker, now, flow))
                delivered = await self.dispatcher.dispatch(event, only=only)
                for sink, ok in delivered.items():
                    self.metrics.record_notification(sink, ok)
                if not delivered:
                    logger.warning(f"Daily report for {ticker} reached no sink")
            except Exception as e:
                logger.error(f"Daily report for {ticker} failed: {e}")

    async def _run_daily_report_loop(self):
        """Send the daily flow report at `daily_report_time` in the display timezone."""
        tz = ZoneInfo(settings.display_timezone)
        logger.info(f"Starting daily report loop ({settings.daily_report_time} {settings.display_timezone})...")

        while self._running:
            try:
                delay = seconds_until(settings.daily_report_time, datetime.now(tz))
                logger.debug(f"Next daily report in {delay:.0f}s")
                await asyncio.sleep(delay)

                await self.send_daily_reports(datetime.now(tz))

                # Step past the scheduled minute
                await asyncio.sleep(60)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Daily report loop error: {e}")
                await asyncio.sleep(60)

    async def _run_credential_loop(self):
        """Re-read the feed credential and warn when it is unusable."""
        while self._running:
            try:
                await asyncio.sleep(CREDENTIAL_CHECK_INTERVAL)

                self.credentials.reload()
                if not self.credentials.is_valid():
                    logger.warning("Flashnet credential missing or expired")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Credential check error: {e}")

    async def _run_stats_loop(self):
        """Log a metrics summary every minute."""
        while self._running:
            try:
                await asyncio.sleep(STATS_INTERVAL)

                summary = self.metrics.get_summary()
                logger.info(
                    f"Stats: {summary['polls']} polls ({summary['poll_errors']} failed), "
                    f"{summary['swaps_new']} new swaps, "
                    f"{summary['holder_transitions']} transitions, "
                    f"{summary['hot_tokens']} hot, "
                    f"{summary['notifications_sent']} sent / {summary['notifications_failed']} failed, "
                    f"uptime {summary['uptime_human']}"
                )
                logger.debug(f"Component stats: {self.get_stats()}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.debug(f"Stats loop error: {e}")


def setup_signal_handlers(app: Application):
    """Setup cross-platform signal handlers for graceful shutdown."""
    def handler(signum, frame):
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")
        # Schedule shutdown in the event loop
        try:
            loop = asyncio.get_running_loop()
            loop.call_soon_threadsafe(lambda: asyncio.create_task(app.stop()))
        except RuntimeError:
            # No running loop yet
            pass

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    # Windows-specific: SIGBREAK (Ctrl+Break)
    if hasattr(signal, 'SIGBREAK'):
        signal.signal(signal.SIGBREAK, handler)


async def main(with_api: bool = False):
    """Main entry point.

    Args:
        with_api: Serve the management API from the same process
    """
    app = Application(with_api=with_api)

    setup_signal_handlers(app)

    try:
        await app.start()
        await app.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await app.stop()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Sparkwatch - Flashnet swap monitor")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Serve the management API in-process (shares token list caches)"
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    asyncio.run(main(with_api=args.api))
