import difflib
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from orderbot.services.menu_catalog import MenuProduct

logger = logging.getLogger(__name__)


CATEGORY_SYNONYMS: dict[str, list[str]] = {
    "bebidas": ["drinks", "bebida", "refrigerante", "refri", "suco", "água"],
    "pizzas": ["pizza", "pizzas"],
    "hambúrgueres": ["hamburger", "burger", "hamburguer", "lanche", "lanches", "sanduíche"],
    "sobremesas": ["doces", "sobremesa", "dessert", "desserts", "açaí", "sorvete"],
    "massas": ["pasta", "macarrão", "espaguete", "lasanha"],
    "saladas": ["salada", "salad"],
    "entradas": ["entrada", "petisco", "aperitivo", "starter"],
    "pratos principais": ["prato principal", "main course", "refeição"],
    "salgados": ["salgado", "coxinha", "pastel", "empada"],
}

COMMON_SYNONYMS: dict[str, list[str]] = {
    "coca-cola": ["coca", "coke", "coca cola"],
    "guaraná": ["guarana", "guaraná antarctica"],
    "margherita": ["margarita", "marguerita", "marg"],
    "calabresa": ["calabreza", "cala"],
    "frango": ["galinha", "chicken"],
    "queijo": ["cheese", "mussarela", "mozzarella", "muçarela"],
    "batata": ["batata frita", "fries", "french fries"],
    "portuguesa": ["portuga"],
    "quatro queijos": ["4 queijos", "4queijos", "four cheese"],
    "pepperoni": ["peperoni", "pepperonis"],
    "x-tudo": ["x tudo", "xtudo", "completo", "tudo"],
    "x-bacon": ["x bacon", "xbacon", "bacon"],
    "hambúrguer": ["hamburger", "hamburguer", "burger", "lanche", "sanduiche", "sanduíche"],
    "cachorro": ["hot dog", "hotdog", "dog", "cachorro quente"],
    "açaí": ["acai", "açai"],
    "batata frita": ["batatas", "fritas", "fries"],
    "tradicional": ["simples", "normal", "classico", "clássico"],
    "supremo": ["especial", "premium", "top"],
    "kids": ["infantil", "criança", "crianca"],
}

# tamanho coloquial -> nome cadastrado
PIZZA_SIZE_SYNONYMS: dict[str, list[str]] = {
    "4 pedaços": ["pequena", "individual", "pequeno", "mini", "p", "4 fatias", "4pedacos"],
    "6 pedaços": ["média", "media", "normal", "m", "6 fatias", "6pedacos"],
    "8 pedaços": ["grande", "familia", "família", "g", "8 fatias", "8pedacos", "inteira"],
    "maracanã": ["gigante", "maracana", "16 pedaços", "16pedacos", "enorme"],
    "golias": ["mega", "super grande", "38 pedaços", "38pedacos"],
}

_IMPORTANT_SINGLE_CHARS = {"x", "p", "m", "g"}

SCORE_EXACT = 1.0
SCORE_NAME_CONTAINS = 0.90
SCORE_NAME_HYPHENLESS = 0.88
SCORE_QUERY_CONTAINS_NAME = 0.85
SCORE_TOKEN_EXACT = 0.82
SCORE_KEYWORD = 0.80
SCORE_INGREDIENT = 0.75
SCORE_DESCRIPTION = 0.65
SCORE_FUZZY_CEILING = 0.5
SCORE_OVERLAP_FLOOR = 0.35


@dataclass(frozen=True)
class SearchResult:
    product: MenuProduct
    similarity: float
    match_type: str  # exact / name / keyword / ingredient / description / fuzzy


def normalize_text(text: str) -> str:
    if not text:
        return ""
    text = text.lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(char for char in text if not unicodedata.combining(char))
    return text.strip()


def tokenize(text: str) -> list[str]:
    words = re.split(r"[\s\-_,\.]+", normalize_text(text))
    return [word for word in words if len(word) > 1 or word in _IMPORTANT_SINGLE_CHARS]


def _without_hyphens(text: str) -> str:
    return re.sub(r"\s+", " ", text.replace("-", " "))


def string_similarity(a: str, b: str) -> float:
    a = normalize_text(a)
    b = normalize_text(b)
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.9
    return difflib.SequenceMatcher(None, a, b).ratio()


def fuzzy_token_match(query_tokens: Sequence[str], product_tokens: Sequence[str]) -> float:
    if not query_tokens or not product_tokens:
        return 0.0
    total = 0.0
    for query_token in query_tokens:
        total += max(string_similarity(query_token, token) for token in product_tokens)
    return total / len(query_tokens)


def expand_with_synonyms(query: str, synonyms: Iterable[tuple[str, str]] = ()) -> list[str]:
    """Expande a busca com sinônimos; a consulta original é sempre a primeira."""
    normalized_query = normalize_text(query)
    expanded = [normalized_query]

    def add(value: str) -> None:
        if value and value not in expanded:
            expanded.append(value)

    for original, synonym in synonyms:
        normalized_original = normalize_text(original)
        normalized_synonym = normalize_text(synonym)
        if normalized_query in (normalized_original, normalized_synonym):
            add(normalized_original)
            add(normalized_synonym)

    for original, variants in COMMON_SYNONYMS.items():
        normalized_original = normalize_text(original)
        normalized_variants = [normalize_text(variant) for variant in variants]
        if normalized_query == normalized_original or normalized_query in normalized_variants:
            add(normalized_original)
            for variant in normalized_variants:
                add(variant)

    query_tokens = set(tokenize(normalized_query))
    for original, variants in PIZZA_SIZE_SYNONYMS.items():
        normalized_original = normalize_text(original)
        normalized_variants = [normalize_text(variant) for variant in variants]
        for variant in normalized_variants:
            # tamanhos de uma letra só valem como token isolado ("pizza g")
            hit = variant in query_tokens if len(variant) == 1 else variant in normalized_query
            if hit:
                add(normalized_original)
                break
        if normalized_original in normalized_query:
            for variant in normalized_variants:
                add(variant)

    return expanded


def expand_category_synonyms(category: str) -> list[str]:
    normalized = normalize_text(category)
    expanded = [normalized]
    for name, variants in CATEGORY_SYNONYMS.items():
        normalized_name = normalize_text(name)
        normalized_variants = [normalize_text(variant) for variant in variants]
        if normalized == normalized_name or normalized in normalized_variants:
            for value in [normalized_name, *normalized_variants]:
                if value not in expanded:
                    expanded.append(value)
    return expanded


def _match_in_list(values: Iterable[str], query_tokens: Sequence[str]) -> bool:
    for value in values:
        normalized_value = normalize_text(value)
        if not normalized_value:
            continue
        for token in query_tokens:
            if token in normalized_value or normalized_value in token:
                return True
    return False


@dataclass(frozen=True)
class PreparedQuery:
    normalized: str
    tokens: list[str]
    expanded: list[str]


class MatchStrategy(Protocol):
    def score(self, product: MenuProduct, query: PreparedQuery, min_similarity: float) -> tuple[float, str]:
        ...


class PrecedenceMatchStrategy:
    """exact → name → keyword → ingredient → description → fuzzy."""

    def score(self, product: MenuProduct, query: PreparedQuery, min_similarity: float) -> tuple[float, str]:
        normalized_name = normalize_text(product.name)
        name_tokens = tokenize(product.name)
        normalized_desc = normalize_text(product.description or "")

        score = 0.0
        match_type = "fuzzy"

        for candidate in query.expanded:
            if not candidate:
                continue
            if normalized_name == candidate:
                return SCORE_EXACT, "exact"

            if candidate in normalized_name and score < SCORE_NAME_CONTAINS:
                score, match_type = SCORE_NAME_CONTAINS, "name"

            name_plain = _without_hyphens(normalized_name)
            candidate_plain = _without_hyphens(candidate)
            if (candidate_plain in name_plain or name_plain in candidate_plain) and score < SCORE_NAME_HYPHENLESS:
                score, match_type = SCORE_NAME_HYPHENLESS, "name"

            if len(normalized_name) >= 3 and normalized_name in candidate and score < SCORE_QUERY_CONTAINS_NAME:
                score, match_type = SCORE_QUERY_CONTAINS_NAME, "name"

            candidate_tokens = tokenize(candidate)
            shared = [token for token in candidate_tokens if len(token) >= 3 and token in name_tokens]
            if shared and score < SCORE_TOKEN_EXACT:
                score, match_type = SCORE_TOKEN_EXACT, "name"

        if score < SCORE_KEYWORD and _match_in_list(product.search_keywords, query.tokens):
            score, match_type = SCORE_KEYWORD, "keyword"

        if score < SCORE_INGREDIENT and _match_in_list(product.ingredients, query.tokens):
            score, match_type = SCORE_INGREDIENT, "ingredient"

        if score < SCORE_DESCRIPTION and normalized_desc:
            if any(candidate and candidate in normalized_desc for candidate in query.expanded):
                score, match_type = SCORE_DESCRIPTION, "description"

        if score < SCORE_FUZZY_CEILING:
            fuzzy = fuzzy_token_match(query.tokens, name_tokens)
            if fuzzy > score:
                score, match_type = fuzzy, "fuzzy"

        if score < min_similarity:
            overlap = any(
                token in name_token or name_token in token
                for token in query.tokens
                for name_token in name_tokens
            )
            if overlap:
                score = max(score, SCORE_OVERLAP_FLOOR)

        return score, match_type


DEFAULT_STRATEGY = PrecedenceMatchStrategy()


def _filter_by_category(products: list[MenuProduct], category: str) -> list[MenuProduct]:
    expanded = expand_category_synonyms(category)
    filtered = []
    for product in products:
        product_category = normalize_text(product.category or "")
        if not product_category:
            continue
        if any(value in product_category or product_category in value for value in expanded):
            filtered.append(product)
    return filtered


def search(
    products: Sequence[MenuProduct],
    query: str | None,
    *,
    max_results: int = 5,
    category: str | None = None,
    include_unavailable: bool = False,
    min_similarity: float = 0.3,
    synonyms: Iterable[tuple[str, str]] = (),
    strategy: MatchStrategy | None = None,
) -> list[SearchResult]:
    strategy = strategy or DEFAULT_STRATEGY
    catalog = sorted(products, key=lambda product: (product.sort_order, product.id))
    if not include_unavailable:
        catalog = [product for product in catalog if product.available]

    if category:
        catalog = _filter_by_category(catalog, category)
        if not (query or "").strip():
            return [SearchResult(product, 0.8, "name") for product in catalog[:max_results]]

    if not (query or "").strip():
        return [SearchResult(product, 0.5, "name") for product in catalog[:max_results]]

    prepared = PreparedQuery(
        normalized=normalize_text(query),
        tokens=tokenize(query),
        expanded=expand_with_synonyms(query, synonyms),
    )

    scored: list[SearchResult] = []
    for product in catalog:
        similarity, match_type = strategy.score(product, prepared, min_similarity)
        if similarity >= min_similarity:
            scored.append(SearchResult(product, round(similarity, 4), match_type))

    # sort estável: empates mantêm a ordem do cardápio
    scored.sort(key=lambda result: result.similarity, reverse=True)
    results = scored[:max_results]
    logger.debug(
        "menu search query=%r expanded=%s matches=%s",
        query,
        prepared.expanded,
        [(result.product.name, result.match_type, result.similarity) for result in results],
    )
    return results


def is_strong_unique_match(results: Sequence[SearchResult], *, threshold: float = 0.85, min_gap: float = 0.1) -> bool:
    if not results:
        return False
    exact = [result for result in results if result.match_type == "exact"]
    if len(exact) == 1:
        return True
    top = results[0].similarity
    if top < threshold:
        return False
    if len(results) == 1:
        return True
    return (top - results[1].similarity) >= min_gap


_NUMBER_WORDS = {
    "um": 1,
    "uma": 1,
    "dois": 2,
    "duas": 2,
    "tres": 3,
    "quatro": 4,
    "cinco": 5,
    "seis": 6,
    "sete": 7,
    "oito": 8,
    "nove": 9,
    "dez": 10,
}


def parse_quantity(token: str) -> int | None:
    token = normalize_text(token)
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS.get(token)


_ORDER_FILLERS = re.compile(
    r"^(?:e\s+)?(?:eu\s+)?(?:(?:quero|queria|quer|gostaria\s+de|pode\s+ser|manda|me\s+ve|traz|da-me|da\s+me|adiciona|mais)\s+)?",
    re.IGNORECASE,
)


def split_order_text(text: str) -> list[dict]:
    """Quebra "quero duas pizzas margherita e uma coca" em [{raw_name, qty}, ...]."""
    raw_text = (text or "").strip()
    if not raw_text:
        return []

    results: list[dict] = []
    for part in re.split(r"\s*(?:,|\+|\n)\s*|\s+e\s+", raw_text, flags=re.IGNORECASE):
        part = _ORDER_FILLERS.sub("", part.strip()).strip()
        if not part:
            continue
        match = re.match(r"^(?P<qty>\d+|\w+)\s*x?\s+(?P<name>.+)$", part)
        if match:
            qty = parse_quantity(match.group("qty"))
            if qty:
                results.append({"raw_name": match.group("name").strip(), "qty": qty})
                continue
        results.append({"raw_name": part, "qty": 1})
    return results
