import os
from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orderbot.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Debounce de mensagens (rajadas do mesmo cliente viram um único turno)
DEBOUNCE_QUIET_WINDOW_SECONDS = float(os.getenv("DEBOUNCE_QUIET_WINDOW_SECONDS", "5"))
DEBOUNCE_SCHEDULER_ENABLED = _env_bool("DEBOUNCE_SCHEDULER_ENABLED", "1")

# Sessão de pedido
PENDING_ITEMS_DEFAULT_EXPIRATION_MINUTES = int(os.getenv("PENDING_ITEMS_DEFAULT_EXPIRATION_MINUTES", "15"))
CONVERSATION_TTL_HOURS = int(os.getenv("CONVERSATION_TTL_HOURS", "24"))

# Recuperação de conversas (follow-ups)
RECOVERY_COOLDOWN_HOURS = int(os.getenv("RECOVERY_COOLDOWN_HOURS", "24"))
RECOVERY_BATCH_SIZE = int(os.getenv("RECOVERY_BATCH_SIZE", "10"))

# LLM
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
LLM_MAX_TOOL_ROUNDS = int(os.getenv("LLM_MAX_TOOL_ROUNDS", "3"))

# WhatsApp Cloud API
META_WA_ACCESS_TOKEN = os.getenv("META_WA_ACCESS_TOKEN", "")
META_WA_PHONE_NUMBER_ID = os.getenv("META_WA_PHONE_NUMBER_ID", "")
META_WA_VERIFY_TOKEN = os.getenv("META_WA_VERIFY_TOKEN", "")
META_API_VERSION = os.getenv("META_API_VERSION", "v19.0")

# Geocoding
NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org").rstrip("/")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "orderbot/1.0")

# Rotas administrativas/internas
ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "").strip()
