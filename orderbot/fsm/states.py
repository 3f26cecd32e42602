IDLE = "idle"
BROWSING_MENU = "browsing_menu"
ADDING_ITEM = "adding_item"
CHOOSING_ADDONS = "choosing_addons"
CONFIRMING_ITEM = "confirming_item"
COLLECTING_ADDRESS = "collecting_address"
COLLECTING_PAYMENT = "collecting_payment"
CONFIRMING_ORDER = "confirming_order"
ORDER_COMPLETED = "order_completed"

ALL_STATES = (
    IDLE,
    BROWSING_MENU,
    ADDING_ITEM,
    CHOOSING_ADDONS,
    CONFIRMING_ITEM,
    COLLECTING_ADDRESS,
    COLLECTING_PAYMENT,
    CONFIRMING_ORDER,
    ORDER_COMPLETED,
)

# Transições pedidas explicitamente (transition_state) ou inferidas pela intenção.
# As transições produzidas por tools bem-sucedidas são aplicadas pelo engine.
STATE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    IDLE: (BROWSING_MENU,),
    BROWSING_MENU: (ADDING_ITEM, COLLECTING_ADDRESS),
    ADDING_ITEM: (CHOOSING_ADDONS, CONFIRMING_ITEM),
    CHOOSING_ADDONS: (CONFIRMING_ITEM,),
    CONFIRMING_ITEM: (BROWSING_MENU, COLLECTING_ADDRESS),
    COLLECTING_ADDRESS: (COLLECTING_PAYMENT,),
    COLLECTING_PAYMENT: (CONFIRMING_ORDER,),
    CONFIRMING_ORDER: (ORDER_COMPLETED, BROWSING_MENU),
    ORDER_COMPLETED: (IDLE,),
}


def is_valid_state(value: str | None) -> bool:
    return value in STATE_TRANSITIONS


def can_transition(current: str, target: str) -> bool:
    return target in STATE_TRANSITIONS.get(current, ())
