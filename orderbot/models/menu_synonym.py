from sqlalchemy import Column, ForeignKey, Integer, String

from orderbot.core.database import Base


class MenuSynonym(Base):
    __tablename__ = "menu_synonyms"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    original_term = Column(String, nullable=False)
    synonym = Column(String, nullable=False)
