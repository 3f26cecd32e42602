from sqlalchemy import Boolean, Column, Integer, String, Text, UniqueConstraint

from orderbot.core.database import Base


class AgentTool(Base):
    __tablename__ = "agent_tools"
    __table_args__ = (UniqueConstraint("restaurant_id", "tool_name", name="uq_agent_tool_restaurant_name"),)

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, index=True, nullable=False)
    tool_name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    ordering = Column(Integer, nullable=False, default=0)
    description_override = Column(Text, nullable=True)
    usage_rules = Column(Text, nullable=True)
