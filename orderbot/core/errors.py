from __future__ import annotations


class OrderBotError(Exception):
    """Base de todos os erros de domínio do assistente de pedidos."""


class LLMProviderError(OrderBotError):
    """Falha transitória do provedor de LLM (timeout, 5xx, resposta ilegível).

    Aborta o turno sem alterar o estado da conversa.
    """


class ContractViolation(OrderBotError):
    """O modelo pediu uma tool não oferecida neste turno ou com argumentos inválidos."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"{tool_name}: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ToolExecutionError(OrderBotError):
    """Uma tool válida falhou ao executar contra o armazenamento."""


class ConfigurationError(OrderBotError):
    """Configuração do agente inválida; rejeitada no momento de salvar."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]
