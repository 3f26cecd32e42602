"""Conjunto de dados reutilizável para cenários de teste do assistente de pedidos."""

RESTAURANT = {
    "id": 1,
    "name": "Pizzaria Lisboa",
    "phone": "351210000000",
    "delivery_fee_cents": 250,
    "language": "pt-PT",
    "accepted_payment_methods": ["cash", "card", "mbway"],
}

CATEGORIES = [
    {"id": 1, "restaurant_id": 1, "name": "Pizzas", "sort_order": 1, "active": True},
    {"id": 2, "restaurant_id": 1, "name": "Bebidas", "sort_order": 2, "active": True},
]

MENU_ITEMS = [
    {
        "id": 1,
        "restaurant_id": 1,
        "category_id": 1,
        "name": "Pizza Margherita",
        "description": "Molho de tomate, mozzarella e manjericão fresco",
        "price_cents": 950,
        "active": True,
        "sort_order": 1,
        "search_keywords": [],
        "ingredients": ["tomate", "mozzarella", "manjericão"],
    },
    {
        "id": 2,
        "restaurant_id": 1,
        "category_id": 1,
        "name": "Pizza Calabresa",
        "description": "Calabresa fatiada com cebola",
        "price_cents": 1100,
        "active": True,
        "sort_order": 2,
        "search_keywords": [],
        "ingredients": ["calabresa", "cebola"],
    },
    {
        "id": 3,
        "restaurant_id": 1,
        "category_id": 2,
        "name": "Coca-Cola",
        "description": "Lata 33cl",
        "price_cents": 250,
        "active": True,
        "sort_order": 3,
        "search_keywords": ["refrigerante"],
        "ingredients": [],
    },
    {
        "id": 4,
        "restaurant_id": 1,
        "category_id": 1,
        "name": "Pizza Portuguesa",
        "description": "Fiambre, ovo e azeitonas",
        "price_cents": 1200,
        "active": False,
        "sort_order": 4,
        "search_keywords": [],
        "ingredients": ["fiambre", "ovo", "azeitonas"],
    },
]

ADDONS = [
    {"id": 1, "restaurant_id": 1, "menu_item_id": 2, "name": "Borda recheada", "price_cents": 200, "active": True},
]

SYNONYMS = [
    {"id": 1, "restaurant_id": 1, "original_term": "Coca-Cola", "synonym": "gasosa"},
]

CUSTOMER_PHONE = "351912345678"

DELIVERY_ADDRESS = "Rua Augusta 100, 1100-048 Lisboa"

GEOCODED_ADDRESS = {
    "lat": 38.7103,
    "lng": -9.1366,
    "formatted_address": "Rua Augusta 100, 1100-048 Lisboa, Portugal",
}

WHATSAPP_TEXT_WEBHOOK = {
    "object": "whatsapp_business_account",
    "entry": [
        {
            "id": "WABA_ID",
            "changes": [
                {
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "metadata": {"display_phone_number": "351210000000", "phone_number_id": "PHONE_ID"},
                        "contacts": [{"profile": {"name": "Maria"}, "wa_id": "351912345678"}],
                        "messages": [
                            {
                                "from": "351912345678",
                                "id": "wamid.HBgM001",
                                "timestamp": "1717000000",
                                "type": "text",
                                "text": {"body": "quero uma pizza margherita"},
                            }
                        ],
                    },
                }
            ],
        }
    ],
}

WHATSAPP_STATUS_WEBHOOK = {
    "object": "whatsapp_business_account",
    "entry": [
        {
            "id": "WABA_ID",
            "changes": [
                {
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "metadata": {"display_phone_number": "351210000000", "phone_number_id": "PHONE_ID"},
                        "statuses": [{"id": "wamid.HBgM001", "status": "delivered"}],
                    },
                }
            ],
        }
    ],
}
