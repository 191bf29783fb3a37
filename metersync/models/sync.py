from sqlalchemy import BigInteger, Column, String, Text

from metersync.db.base import Base, epoch_ms


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"

    key = Column(String(128), primary_key=True)  # last_<sync_type>_sync
    value = Column(Text, nullable=True)          # epoch ms, as text
    last_updated = Column(BigInteger, nullable=False, default=epoch_ms)
