from sqlalchemy import BigInteger, Boolean, Column, String

from metersync.db.base import Base, epoch_ms


class AvailableSerialNumber(Base):
    """Serial number a field agent may assign to a new meter."""

    __tablename__ = "unused_meter_serial_numbers"

    serial_number = Column(String(64), primary_key=True)
    is_valid = Column(Boolean, nullable=False, default=True)
    is_used = Column(Boolean, nullable=False, default=False)
    last_updated = Column(BigInteger, nullable=False, default=epoch_ms)
