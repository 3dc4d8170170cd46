import asyncio
from typing import Any, Callable, List, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Request,
    Response,
    TimeoutError as PlaywrightTimeoutError,
)

from services.ppv.browser.session import NetworkObserver, Unsubscribe
from services.ppv.errors import NavigationTimeout
from shared.config.relay import BrowserConfig
from shared.logging.logger import get_logger

log = get_logger("ppv.browser")


# Masks the usual automation fingerprints and neutralises window.open so
# event pages cannot spawn ad tabs.
STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => false });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    window.chrome = { runtime: {} };
    window.open = function() { return null; };
    Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
    Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
"""


class PlaywrightSession:
    """
    Rendering session backed by a single Chromium page.

    RULES:
    - ONE page per session, reused for every navigation in a batch
    - Network observers are plain page listeners; the caller owns unsubscription
    - close() is idempotent and never raises
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self._config = config or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

        self._lock = asyncio.Lock()
        self._started = False

    # ------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------

    @classmethod
    async def launch(cls, config: Optional[BrowserConfig] = None) -> "PlaywrightSession":
        session = cls(config)
        try:
            await session.start()
        except Exception:
            await session.close()
            raise
        return session

    # ------------------------------------------------------------

    async def start(self) -> None:
        async with self._lock:
            if self._started:
                return

            cfg = self._config
            log.info(
                f"Starting Chromium (headless={cfg.headless}, "
                f"executable={cfg.executable_path or 'bundled'})"
            )

            self._playwright = await async_playwright().start()

            launch_kwargs = {
                "headless": cfg.headless,
                "args": list(cfg.args),
                "timeout": cfg.launch_timeout_ms,
            }
            if cfg.executable_path:
                launch_kwargs["executable_path"] = cfg.executable_path

            self._browser = await self._playwright.chromium.launch(**launch_kwargs)

            self._context = await self._browser.new_context(
                user_agent=cfg.user_agent,
                viewport={"width": cfg.viewport_width, "height": cfg.viewport_height},
                extra_http_headers={
                    "Accept-Language": cfg.accept_language,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                },
            )
            await self._context.add_init_script(STEALTH_INIT_SCRIPT)

            self._page = await self._context.new_page()
            self._page.on("popup", self._close_popup)

            self._started = True
            log.info("Rendering session ready")

    # ------------------------------------------------------------

    async def _close_popup(self, popup: Page) -> None:
        try:
            log.debug(f"Closing popup → {popup.url}")
            await popup.close()
        except Exception as e:
            log.debug(f"Popup close ignored: {e}")

    def _require_page(self) -> Page:
        if not self._page:
            raise RuntimeError("Browser not started")
        return self._page

    # ------------------------------------------------------------
    # RenderingSession capability
    # ------------------------------------------------------------

    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> None:
        page = self._require_page()
        log.debug(f"Navigating → {url} (wait_until={wait_until}, timeout={timeout_ms}ms)")
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(url, timeout_ms) from e

    def observe(
        self,
        on_request: NetworkObserver,
        on_response: NetworkObserver,
    ) -> Unsubscribe:
        page = self._require_page()

        def _request_handler(request: Request) -> None:
            on_request(request.url)

        def _response_handler(response: Response) -> None:
            on_response(response.url)

        page.on("request", _request_handler)
        page.on("response", _response_handler)

        def _unsubscribe() -> None:
            _remove_listener(page, "request", _request_handler)
            _remove_listener(page, "response", _response_handler)

        return _unsubscribe

    def list_frames(self) -> List[Any]:
        return list(self._require_page().frames)

    async def evaluate_in_frame(self, frame: Any, script: str) -> Any:
        return await frame.evaluate(script)

    async def content(self) -> str:
        return await self._require_page().content()

    # ------------------------------------------------------------

    async def close(self) -> None:
        async with self._lock:
            log.info("Shutting down rendering session")

            try:
                if self._context:
                    try:
                        await self._context.close()
                    except Exception as e:
                        log.warning(f"Browser context close ignored: {e}")

                if self._browser:
                    try:
                        await self._browser.close()
                    except Exception as e:
                        log.warning(f"Browser close ignored: {e}")

                if self._playwright:
                    try:
                        await self._playwright.stop()
                    except Exception as e:
                        log.warning(f"Playwright stop ignored: {e}")
            finally:
                self._context = None
                self._browser = None
                self._page = None
                self._playwright = None
                self._started = False


def _remove_listener(page: Page, event: str, handler: Callable[..., Any]) -> None:
    try:
        page.remove_listener(event, handler)
    except Exception as e:
        log.debug(f"Listener removal for '{event}' ignored: {e}")
