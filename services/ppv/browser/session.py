"""
Rendering session capability.

Discovery and resolution only ever talk to this protocol. The Playwright
client implements it for production; tests provide an in-memory fake that
returns canned DOM and network events.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Protocol

# Receives the URL of an observed request or response.
NetworkObserver = Callable[[str], None]

Unsubscribe = Callable[[], None]


class RenderingSession(Protocol):
    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> None:
        """Load url; raises NavigationTimeout when the wait condition is not met in time."""
        ...

    def observe(
        self,
        on_request: NetworkObserver,
        on_response: NetworkObserver,
    ) -> Unsubscribe:
        """Subscribe to outbound requests and inbound responses."""
        ...

    def list_frames(self) -> List[Any]:
        """Frames of the current page, main frame first."""
        ...

    async def evaluate_in_frame(self, frame: Any, script: str) -> Any:
        ...

    async def content(self) -> str:
        """Rendered HTML of the main frame."""
        ...

    async def close(self) -> None:
        ...


SessionFactory = Callable[[], Awaitable[RenderingSession]]
