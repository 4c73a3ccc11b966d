from sqlalchemy import Column, Integer, String, DateTime, func
from teashop.db import Base

__all__ = ["Subscriber"]


class Subscriber(Base):
    """Чат оператора, подписанный на служебные уведомления."""

    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String, unique=True, nullable=False)
    username = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
