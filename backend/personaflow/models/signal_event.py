"""行为信号事件模型"""
from personaflow.core.clock import utcnow
from sqlalchemy import Column, String, DateTime, Float, BigInteger, JSON, Index

from personaflow.core.database import Base


class SignalEvent(Base):
    """行为信号事件表（只追加）"""
    __tablename__ = "atlasai_events"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    visitor_hash = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=False, default="")
    event_type = Column(String(50), nullable=False)
    post_id = Column(BigInteger, nullable=False, default=0)  # 文章/商品/作者/分类，含义取决于 event_type
    event_value = Column(Float, nullable=True)
    weight = Column(Float, nullable=False, default=0.0)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # 索引
    __table_args__ = (
        Index('idx_events_visitor_time', 'visitor_hash', 'created_at'),
        Index('idx_events_type_time', 'event_type', 'created_at'),
        Index('idx_events_session', 'visitor_hash', 'session_id'),
        Index('idx_events_post', 'post_id'),
    )
