from orderbot.services.menu_catalog import AddonOption, MenuProduct
from orderbot.services.menu_search import (
    expand_with_synonyms,
    is_strong_unique_match,
    normalize_text,
    search,
    split_order_text,
)
from tests.fixtures_data import ADDONS, CATEGORIES, MENU_ITEMS


def _catalog() -> list[MenuProduct]:
    categories = {category["id"]: category["name"] for category in CATEGORIES}
    products = []
    for item in MENU_ITEMS:
        addons = tuple(
            AddonOption(id=addon["id"], name=addon["name"], price_cents=addon["price_cents"])
            for addon in ADDONS
            if addon["menu_item_id"] == item["id"]
        )
        products.append(
            MenuProduct(
                id=item["id"],
                name=item["name"],
                price_cents=item["price_cents"],
                category=categories[item["category_id"]],
                description=item["description"],
                available=item["active"],
                sort_order=item["sort_order"],
                search_keywords=tuple(item["search_keywords"]),
                ingredients=tuple(item["ingredients"]),
                addons=addons,
            )
        )
    return products


def test_normalize_text_strips_accents_and_case():
    assert normalize_text("  Açaí MÉDIA ") == "acai media"
    assert normalize_text("") == ""


def test_common_synonym_resolves_to_exact_product():
    results = search(_catalog(), "coca")

    assert results[0].product.name == "Coca-Cola"
    assert results[0].match_type == "exact"
    assert results[0].similarity == 1.0
    assert is_strong_unique_match(results)


def test_exact_name_match_wins_over_shared_tokens():
    results = search(_catalog(), "pizza margherita")

    assert results[0].product.name == "Pizza Margherita"
    assert results[0].match_type == "exact"
    assert results[1].product.name == "Pizza Calabresa"
    assert results[1].similarity < 1.0
    assert is_strong_unique_match(results)


def test_misspelled_name_is_found_through_synonyms():
    results = search(_catalog(), "margarita")

    assert results[0].product.name == "Pizza Margherita"
    assert results[0].match_type == "name"


def test_restaurant_synonyms_extend_the_query():
    synonyms = [("Coca-Cola", "gasosa")]

    assert "coca-cola" in expand_with_synonyms("gasosa", synonyms)
    results = search(_catalog(), "gasosa", synonyms=synonyms)
    assert results[0].product.name == "Coca-Cola"
    assert results[0].match_type == "exact"


def test_ingredient_and_keyword_matches():
    by_ingredient = search(_catalog(), "manjericão")
    by_keyword = search(_catalog(), "refrigerante")

    assert by_ingredient[0].product.name == "Pizza Margherita"
    assert by_ingredient[0].match_type == "ingredient"
    assert by_keyword[0].product.name == "Coca-Cola"
    assert by_keyword[0].match_type == "keyword"


def test_category_filter_accepts_category_synonyms():
    results = search(_catalog(), None, category="refri")

    assert [result.product.name for result in results] == ["Coca-Cola"]


def test_unavailable_products_are_hidden_unless_requested():
    hidden = search(_catalog(), "portuguesa")
    shown = search(_catalog(), "portuguesa", include_unavailable=True)

    assert all(result.product.name != "Pizza Portuguesa" for result in hidden)
    assert shown[0].product.name == "Pizza Portuguesa"


def test_ties_keep_menu_order_and_are_not_a_strong_match():
    results = search(_catalog(), "pizza")

    assert [result.product.name for result in results[:2]] == ["Pizza Margherita", "Pizza Calabresa"]
    assert results[0].similarity == results[1].similarity
    assert not is_strong_unique_match(results)


def test_empty_query_lists_catalog_in_menu_order():
    results = search(_catalog(), "", max_results=2)

    assert [result.product.id for result in results] == [1, 2]


def test_split_order_text_extracts_quantities_and_drops_fillers():
    assert split_order_text("quero duas pizzas margherita e uma coca") == [
        {"raw_name": "pizzas margherita", "qty": 2},
        {"raw_name": "coca", "qty": 1},
    ]
    assert split_order_text("3x coca, pizza calabresa") == [
        {"raw_name": "coca", "qty": 3},
        {"raw_name": "pizza calabresa", "qty": 1},
    ]
    assert split_order_text("   ") == []
