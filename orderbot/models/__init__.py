from orderbot.models.restaurant import Restaurant
from orderbot.models.menu_category import MenuCategory
from orderbot.models.menu_item import MenuItem
from orderbot.models.addon import Addon
from orderbot.models.menu_synonym import MenuSynonym
from orderbot.models.delivery_zone import DeliveryZone
from orderbot.models.cart import Cart
from orderbot.models.cart_item import CartItem
from orderbot.models.conversation import ConversationState
from orderbot.models.pending_item import PendingItem
from orderbot.models.debounce_queue import DebounceQueueEntry
from orderbot.models.order import Order
from orderbot.models.customer_profile import CustomerProfile
from orderbot.models.agent_config import AgentConfig
from orderbot.models.agent_tool import AgentTool
from orderbot.models.ai_message_log import AIMessageLog
from orderbot.models.processed_message import ProcessedMessage
from orderbot.models.whatsapp_config import WhatsAppConfig
from orderbot.models.recovery_attempt import RecoveryAttempt
