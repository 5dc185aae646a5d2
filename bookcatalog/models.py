"""
数据库模型定义
"""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from bookcatalog.database import Base


class User(Base):
    """用户表"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # 会话令牌：每个用户仅一个有效令牌，重新登录会覆盖旧令牌
    token = Column(String(255), nullable=True)
    token_issued_at = Column(DateTime, nullable=True)


class Book(Base):
    """书籍表（评论以 JSON 数组内嵌保存）"""
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    book_name = Column(String(200), nullable=False, index=True)
    author_name = Column(String(200), nullable=False, index=True)

    # 评论集合与聚合值，必须整体写入
    reviews = Column(JSON, nullable=False, default=list)
    total_rating = Column(Integer, nullable=False, default=0)
    total_reviews = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)  # 乐观锁版本号

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        UniqueConstraint('book_name', 'author_name', name='uq_book_name_author'),
    )
