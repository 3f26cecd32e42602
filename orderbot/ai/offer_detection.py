from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Pattern, Sequence, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")

DEFAULT_NEGATIVE_PATTERNS = (
    r"não temos",
    r"não está disponível",
    r"indisponível",
    r"sem o",
    r"sem a",
    r"esgotad",
    r"acabou",
)

# {name} recebe o nome do produto já escapado
DEFAULT_OFFERING_TEMPLATES = (
    r"temos\s+(a|o)?\s*{name}",
    r"{name}\s+(custa|é|por)\s*€",
    r"(queres|quer|adicionar)\s+(a|o)?\s*{name}",
    r"(recomendo|ofereço|oferecemos|sugerimos)\s+(a|o)?\s*{name}",
    r"{name}.{{0,20}}€\d+",
)


@dataclass(frozen=True)
class OfferPatterns:
    """Heurística substituível: lista de negações e de padrões de oferta."""

    negative: Sequence[str] = DEFAULT_NEGATIVE_PATTERNS
    offering: Sequence[str] = DEFAULT_OFFERING_TEMPLATES
    _negative_compiled: tuple[Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.negative)
        object.__setattr__(self, "_negative_compiled", compiled)

    def is_negated(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._negative_compiled)

    def offering_patterns(self, product_name: str) -> list[Pattern[str]]:
        escaped = re.escape(product_name)
        return [re.compile(template.format(name=escaped), re.IGNORECASE) for template in self.offering]


DEFAULT_OFFER_PATTERNS = OfferPatterns()


def _default_name(product) -> str:
    if isinstance(product, dict):
        return str(product.get("name") or "")
    return str(getattr(product, "name", "") or "")


def detect_offered_product(
    reply_text: str,
    products: Sequence[P],
    *,
    patterns: OfferPatterns = DEFAULT_OFFER_PATTERNS,
    name_of: Callable[[P], str] = _default_name,
) -> P | None:
    if not reply_text or not products:
        return None

    lower_reply = reply_text.lower()
    if patterns.is_negated(lower_reply):
        logger.debug("offer detection: negative pattern found")
        return None

    for product in products:
        name = name_of(product).lower()
        if not name or name not in lower_reply:
            continue
        for pattern in patterns.offering_patterns(name):
            if pattern.search(lower_reply):
                logger.debug("offer detection: %s matched %s", name, pattern.pattern)
                return product
    return None
