"""Availability detection against a rendered product page.

Strategies run in order; each returns a definitive verdict or INCONCLUSIVE, and
the first definitive verdict wins. When nothing is definitive the page is
treated as NOT_FOUND: ambiguity never reports a product as available.

1. structured_button_scan: known button class patterns, visible elements only
2. generic_element_scan: any clickable element, plus unavailable phrases in page text
3. markup_text_scan: raw markup search for the keyword away from unavailable phrasing
"""

import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from stockwatch.config import UNAVAILABLE_PHRASE_WINDOW
from stockwatch.core.exceptions import DetectionError

logger = logging.getLogger(__name__)


class Verdict(str, enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    INCONCLUSIVE = "inconclusive"

    @property
    def available(self) -> bool:
        return self is Verdict.FOUND


DEFAULT_UNAVAILABLE_PHRASES = ("out of stock", "sold out", "notify me", "unavailable")

STRUCTURED_BUTTON_SELECTORS = "div[class*='usBtn'], div[class*='btn'], div[class*='Btn']"

GENERIC_ELEMENT_SELECTORS = (
    "button, input[type='button'], input[type='submit'], a[role='button'], "
    "*[onclick], *[role='button'], *[class*='btn'], *[class*='Btn'], "
    "*[class*='button'], *[class*='Button']"
)

# Selector waited on before detection runs
KEY_ELEMENT_SELECTOR = "button[class*='btn'], div[class*='btn'], div[class*='usBtn'], *[class*='button'], *[class*='Button']"

_STRUCTURED_SCAN_JS = """
([keyword, selector]) => {
  const nodes = document.querySelectorAll(selector);
  for (const node of nodes) {
    const text = (node.textContent || '').toLowerCase();
    if (text.indexOf(keyword) !== -1 && node.offsetParent !== null) {
      return 'found';
    }
  }
  return 'inconclusive';
}
"""

_GENERIC_SCAN_JS = """
([keyword, selector, phrases]) => {
  const nodes = document.querySelectorAll(selector);
  let disabled = false;
  for (const node of nodes) {
    const text = (node.textContent || node.value || '').toLowerCase();
    if (text.indexOf(keyword) === -1) continue;
    if (node.disabled || node.getAttribute('aria-disabled') === 'true') {
      disabled = true;
      continue;
    }
    if (node.offsetParent !== null) return 'found';
  }
  if (disabled) return 'unavailable';
  const body = ((document.body && document.body.textContent) || '').toLowerCase();
  for (const phrase of phrases) {
    if (body.indexOf(phrase) !== -1) return 'unavailable';
  }
  return 'inconclusive';
}
"""


@dataclass
class DetectionContext:
    keyword: str
    selector_hint: str = ""
    unavailable_phrases: Sequence[str] = field(default_factory=lambda: DEFAULT_UNAVAILABLE_PHRASES)

    @property
    def needle(self) -> str:
        return self.keyword.strip().lower()

    @property
    def phrases(self) -> list[str]:
        return [p.lower() for p in self.unavailable_phrases]


Strategy = Callable[[object, DetectionContext], Awaitable[Verdict]]


def _to_verdict(raw: object) -> Verdict:
    try:
        return Verdict(raw)
    except ValueError:
        return Verdict.INCONCLUSIVE


async def structured_button_scan(page, ctx: DetectionContext) -> Verdict:
    selector = STRUCTURED_BUTTON_SELECTORS
    if ctx.selector_hint:
        selector = f"{ctx.selector_hint}, {selector}"
    raw = await page.evaluate(_STRUCTURED_SCAN_JS, [ctx.needle, selector])
    verdict = _to_verdict(raw)
    # This strategy only ever confirms availability
    return verdict if verdict is Verdict.FOUND else Verdict.INCONCLUSIVE


async def generic_element_scan(page, ctx: DetectionContext) -> Verdict:
    raw = await page.evaluate(_GENERIC_SCAN_JS, [ctx.needle, GENERIC_ELEMENT_SELECTORS, ctx.phrases])
    verdict = _to_verdict(raw)
    if verdict is Verdict.NOT_FOUND:
        return Verdict.INCONCLUSIVE
    return verdict


def scan_markup(markup: str, ctx: DetectionContext) -> Verdict:
    """Keyword present and clear of unavailable phrasing -> FOUND; absent -> NOT_FOUND."""
    text = markup.lower()
    needle = ctx.needle
    if not needle or needle not in text:
        return Verdict.NOT_FOUND

    phrases = ctx.phrases
    start = text.find(needle)
    while start != -1:
        window = text[max(0, start - UNAVAILABLE_PHRASE_WINDOW) : start + len(needle) + UNAVAILABLE_PHRASE_WINDOW]
        if not any(phrase in window for phrase in phrases):
            return Verdict.FOUND
        start = text.find(needle, start + len(needle))
    return Verdict.UNAVAILABLE


async def markup_text_scan(page, ctx: DetectionContext) -> Verdict:
    return scan_markup(await page.content(), ctx)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    structured_button_scan,
    generic_element_scan,
    markup_text_scan,
)


class DetectionPipeline:
    def __init__(
        self,
        keyword: str,
        selector_hint: str = "",
        unavailable_phrases: Sequence[str] = DEFAULT_UNAVAILABLE_PHRASES,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.context = DetectionContext(
            keyword=keyword,
            selector_hint=selector_hint,
            unavailable_phrases=tuple(unavailable_phrases),
        )
        self.strategies = tuple(strategies)

    async def detect(self, page) -> Verdict:
        """Run strategies in order until one is definitive.

        A strategy that raises is treated as inconclusive. If every strategy
        raised, there is no evidence at all and DetectionError is raised.
        """
        failures: list[str] = []
        for strategy in self.strategies:
            try:
                verdict = await strategy(page, self.context)
            except Exception as e:
                logger.debug(f"Detection strategy {strategy.__name__} failed: {e}")
                failures.append(f"{strategy.__name__}: {e}")
                continue
            if verdict is not Verdict.INCONCLUSIVE:
                logger.debug(f"Detection strategy {strategy.__name__} -> {verdict.value}")
                return verdict

        if self.strategies and len(failures) == len(self.strategies):
            raise DetectionError("all detection strategies failed: " + "; ".join(failures))

        logger.debug("No detection strategy was definitive, defaulting to not_found")
        return Verdict.NOT_FOUND
