# catalog_repricer/scraping.py
from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from playwright.async_api import Browser, BrowserContext, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import ProbeSettings
from .logger import log
from .models import CompetitorObservation, MergedItem
from .parsing import extract_min_price

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
]

EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
}

VIEWPORT = {"width": 1366, "height": 768}

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-dev-shm-usage",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-blink-features=AutomationControlled",
]

SCROLL_JS = "(fraction) => window.scrollTo(0, window.innerHeight * fraction)"


class ProbeState(str, Enum):
    IDLE = "IDLE"
    CONTEXT_OPENED = "CONTEXT_OPENED"
    NAVIGATING = "NAVIGATING"
    EXTRACTING = "EXTRACTING"
    CONTEXT_CLOSED = "CONTEXT_CLOSED"


class ProbeTactics:
    """
    Anti-detection behaviour of the prober: jittered pauses, user-agent
    rotation and a couple of random scrolls after page load.

    Tests pass a seeded ``rng`` and a no-op ``sleep``.
    """

    def __init__(
        self,
        user_agents: Optional[Sequence[str]] = None,
        pre_navigation: Tuple[float, float] = (1.0, 2.0),
        after_scroll: Tuple[float, float] = (0.5, 2.0),
        between_items: Tuple[float, float] = (1.0, 4.0),
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.user_agents = list(user_agents or USER_AGENTS)
        self.pre_navigation = pre_navigation
        self.after_scroll = after_scroll
        self.between_items = between_items
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    async def pause(self, bounds: Tuple[float, float]) -> None:
        await self._sleep(self.rng.uniform(*bounds))

    def user_agent(self) -> str:
        return self.rng.choice(self.user_agents)

    def scroll_fractions(self) -> List[float]:
        count = self.rng.randint(2, 3)
        return sorted(self.rng.uniform(0.2, 0.95) for _ in range(count))


def should_probe(merged: MergedItem) -> bool:
    """No lookup target or no viable wholesale price → nothing to probe."""
    return bool(merged.item.competitor_url) and merged.best_offer is not None


class CompetitorPriceProber:
    """
    Looks up the lowest listed competitor price for catalog items, one item
    at a time, against a single long-lived browser.

    Per item: IDLE → CONTEXT_OPENED → NAVIGATING → EXTRACTING → CONTEXT_CLOSED.
    Every failure degrades to ``CompetitorObservation(price=None)``.
    """

    def __init__(
        self,
        browser: Browser,
        settings: ProbeSettings,
        tactics: Optional[ProbeTactics] = None,
    ) -> None:
        self.browser = browser
        self.settings = settings
        self.tactics = tactics or ProbeTactics()
        self.last_trace: List[ProbeState] = []

    @asynccontextmanager
    async def _isolated_context(self, trace: List[ProbeState]) -> AsyncIterator[BrowserContext]:
        context = await self.browser.new_context(
            user_agent=self.tactics.user_agent(),
            viewport=VIEWPORT,
            extra_http_headers=EXTRA_HEADERS,
        )
        trace.append(ProbeState.CONTEXT_OPENED)
        try:
            yield context
        finally:
            await context.close()
            trace.append(ProbeState.CONTEXT_CLOSED)

    async def probe(self, url: str) -> CompetitorObservation:
        trace = [ProbeState.IDLE]
        self.last_trace = trace

        if not url:
            return CompetitorObservation()

        try:
            async with self._isolated_context(trace) as context:
                page = await context.new_page()

                await self.tactics.pause(self.tactics.pre_navigation)
                trace.append(ProbeState.NAVIGATING)
                await page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=self.settings.navigation_timeout_ms,
                )

                for fraction in self.tactics.scroll_fractions():
                    await page.evaluate(SCROLL_JS, fraction)
                await self.tactics.pause(self.tactics.after_scroll)

                trace.append(ProbeState.EXTRACTING)
                html = await page.content()
                price = extract_min_price(html, self.settings.price_selector)

        except PlaywrightTimeoutError as exc:
            log(f"probe timeout url={url} exc={exc!r}", context="scraping", level="WARNING")
            return CompetitorObservation(price=None, error="timeout")
        except Exception as exc:
            log(
                f"probe failed url={url} exc={type(exc).__name__}: {exc}",
                context="scraping",
                level="WARNING",
            )
            return CompetitorObservation(price=None, error=type(exc).__name__)

        if price is None:
            return CompetitorObservation(price=None, error="no_price")
        return CompetitorObservation(price=price)

    async def probe_items(self, items: Sequence[MergedItem]) -> List[CompetitorObservation]:
        """
        Probe items strictly sequentially in fixed-size batches. Output order
        matches ``items``; skipped items get an empty observation.
        """
        batch_size = max(1, self.settings.batch_size)
        total = len(items)
        batches = (total + batch_size - 1) // batch_size
        observations: List[CompetitorObservation] = []

        for start in range(0, total, batch_size):
            batch = items[start:start + batch_size]
            log(
                f"Probing batch {start // batch_size + 1} of {batches}",
                context="scraping",
            )

            for merged in batch:
                if not should_probe(merged):
                    observations.append(CompetitorObservation())
                    continue

                observation = await self.probe(merged.item.competitor_url)
                log(
                    f"competitor price for {merged.item.part_number}: {observation.price}",
                    context="scraping",
                    extra={"item_id": merged.item.id, "error": observation.error},
                )
                observations.append(observation)
                await self.tactics.pause(self.tactics.between_items)

        return observations


@asynccontextmanager
async def launch_browser(settings: ProbeSettings) -> AsyncIterator[Browser]:
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(
            headless=settings.headless,
            args=LAUNCH_ARGS,
            ignore_default_args=["--enable-automation"],
        )
        try:
            yield browser
        finally:
            await browser.close()


async def probe_competitor_prices(
    items: Sequence[MergedItem],
    settings: ProbeSettings,
    tactics: Optional[ProbeTactics] = None,
) -> List[CompetitorObservation]:
    if not any(should_probe(m) for m in items):
        return [CompetitorObservation() for _ in items]

    async with launch_browser(settings) as browser:
        prober = CompetitorPriceProber(browser, settings, tactics=tactics)
        return await prober.probe_items(items)
