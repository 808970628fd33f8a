"""内容元数据镜像模型（作者 / 分类）"""
from sqlalchemy import Column, BigInteger, ForeignKey, Index

from personaflow.core.database import Base


class Post(Base):
    """文章/商品表（由宿主站点同步）"""
    __tablename__ = "posts"

    id = Column(BigInteger, primary_key=True)
    author_id = Column(BigInteger, nullable=True)


class PostCategory(Base):
    """文章-分类关联表"""
    __tablename__ = "post_categories"

    post_id = Column(BigInteger, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    category_id = Column(BigInteger, primary_key=True)

    __table_args__ = (
        Index('idx_post_categories_category', 'category_id'),
    )
