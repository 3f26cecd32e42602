from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text, func

from orderbot.core.database import Base


class AgentConfig(Base):
    __tablename__ = "agent_configs"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, index=True, nullable=False, unique=True)
    provider = Column(String, nullable=False, default="mock")
    enabled = Column(Boolean, nullable=False, default=False)
    model = Column(String, nullable=True)
    temperature = Column(Float, nullable=True)
    timeout_seconds = Column(Float, nullable=True)
    max_tool_rounds = Column(Integer, nullable=True)
    base_system_prompt = Column(Text, nullable=True)
    # validados por orderbot.schemas.agent_config ao salvar
    behavior_config = Column(JSON, nullable=False, default=dict)
    orchestration_config = Column(JSON, nullable=True)
    recovery_config = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
