from billing_app.database.database import Base
from sqlalchemy import Column, Integer, String, JSON
from billing_app.common.mixins import TimestampMixin


class StoreRecord(Base, TimestampMixin):
    """Registro sin esquema de una colección; la versión habilita escrituras condicionales"""
    __tablename__ = "store_records"

    collection = Column(String(100), primary_key=True)
    record_id = Column(String(200), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    data = Column(JSON, nullable=False, default=dict)
