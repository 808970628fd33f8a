"""访客排除规则模型"""
from personaflow.core.clock import utcnow
from sqlalchemy import Column, String, DateTime, BigInteger, Index, UniqueConstraint, CheckConstraint

from personaflow.core.database import Base


class UserExclusion(Base):
    """访客排除规则表"""
    __tablename__ = "atlasai_user_exclusions"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    visitor_hash = Column(String(64), nullable=False)
    user_id = Column(BigInteger, nullable=True, default=0)
    exclusion_type = Column(String(30), nullable=False)  # hide_post, mute_author, block_author, dismiss_category
    target_id = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # 约束
    __table_args__ = (
        UniqueConstraint('visitor_hash', 'exclusion_type', 'target_id', name='user_type_target'),
        CheckConstraint(
            "exclusion_type IN ('hide_post', 'mute_author', 'block_author', 'dismiss_category')",
            name='exclusion_type_check'
        ),
        Index('idx_exclusions_visitor', 'visitor_hash', 'created_at'),
        Index('idx_exclusions_user', 'user_id'),
        Index('idx_exclusions_type', 'exclusion_type'),
    )
