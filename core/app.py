import asyncio
import signal
import sys

from aiohttp import web
from dotenv import load_dotenv

from core.cache import StreamCache
from core.scheduler import RefreshScheduler
from runtime import version
from services.ppv.browser.browser_client import PlaywrightSession
from services.ppv.discovery import EventDiscovery
from services.ppv.resolver import StreamResolver
from services.relay.proxy import HlsRelay
from services.relay.server import build_app
from shared.config.relay import load_app_config
from shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{version.as_string()} booting")

    cfg = load_app_config()
    log.info(
        f"Source site: {cfg.discovery.site_url} | "
        f"refresh every {cfg.scheduler.interval_seconds}s | "
        f"headless={cfg.browser.headless}"
    )

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    cache = StreamCache()
    relay = HlsRelay(cfg.proxy)

    async def _open_session():
        return await PlaywrightSession.launch(cfg.browser)

    scheduler = RefreshScheduler(
        cache,
        _open_session,
        discovery=EventDiscovery(cfg.discovery),
        resolver=StreamResolver(cfg.resolver),
        config=cfg.scheduler,
    )

    # --------------------------------------------------
    # RELAY SERVER
    # --------------------------------------------------
    app = build_app(relay, cache, trigger=scheduler.trigger)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, cfg.server.host, cfg.server.port)
    await site.start()
    log.info(f"Relay listening on {cfg.server.host}:{cfg.server.port}")

    # --------------------------------------------------
    # REFRESH LOOP (BLOCKS UNTIL SHUTDOWN SIGNAL)
    # --------------------------------------------------
    try:
        await scheduler.run(stop_event)
    finally:
        log.info("Shutdown initiated")

        # --------------------------------------------------
        # ORDERLY SHUTDOWN: BATCH FIRST, THEN SERVER
        # --------------------------------------------------
        try:
            await scheduler.shutdown()
        except Exception as e:
            log.warning(f"Scheduler shutdown error ignored: {e}")

        try:
            await runner.cleanup()
        except Exception as e:
            log.warning(f"Relay server cleanup error ignored: {e}")

        try:
            await relay.aclose()
        except Exception as e:
            log.warning(f"Relay client close error ignored: {e}")

        log.info(f"Final state: {scheduler.status()}")
        log.info("PPV Relay stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
