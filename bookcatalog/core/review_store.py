"""
评论存储访问
负责书籍评论集合与聚合值的读写，以及用户令牌的读取

评论集合在内存中以 user_id -> Review 的有序字典表示，
落库时序列化为 JSON 数组 [{user_id, review, rating}, ...]
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from bookcatalog.core.errors import StorageError
from bookcatalog.database import session_scope
from bookcatalog.models import Book, User
from bookcatalog.utils.logger import log

T = TypeVar("T")


@dataclass(frozen=True)
class Review:
    """单条评论"""
    user_id: int
    review: str
    rating: int

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "review": self.review, "rating": self.rating}


@dataclass
class BookState:
    """一本书的评论集合与聚合值快照"""
    book_id: int
    reviews: Dict[int, Review] = field(default_factory=dict)
    total_rating: int = 0
    total_reviews: int = 0
    version: int = 0


@dataclass(frozen=True)
class UserToken:
    token: Optional[str]
    issued_at: Optional[datetime]


def reviews_from_json(book_id: int, raw: Any) -> Dict[int, Review]:
    """将存储中的 JSON 数组还原为有序字典"""
    if not isinstance(raw, list):
        if raw is not None:
            log.warning(f"书籍 {book_id} 的评论数据格式异常，按空集合处理")
        return {}

    reviews: Dict[int, Review] = {}
    for item in raw:
        if not isinstance(item, dict) or "user_id" not in item:
            log.warning(f"书籍 {book_id} 存在无法解析的评论条目: {item!r}")
            continue
        try:
            user_id = int(item["user_id"])
            rating = int(item.get("rating", 0))
        except (TypeError, ValueError):
            log.warning(f"书籍 {book_id} 存在无法解析的评论条目: {item!r}")
            continue
        if user_id in reviews:
            log.warning(f"书籍 {book_id} 存在重复的用户评论 user_id={user_id}，保留第一条")
            continue
        reviews[user_id] = Review(
            user_id=user_id,
            review=str(item.get("review", "")),
            rating=rating,
        )
    return reviews


def reviews_to_json(reviews: Dict[int, Review]) -> List[Dict[str, Any]]:
    return [review.to_dict() for review in reviews.values()]


class ReviewStore:
    """
    基于 SQLAlchemy 的评论存储

    每次调用使用独立会话，并受 timeout 限制；
    超时或数据库异常统一转换为 StorageError
    """

    def __init__(self, session_maker: async_sessionmaker, timeout: float = 10.0):
        self.session_maker = session_maker
        self.timeout = timeout

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            log.error(f"存储操作超时: {operation}")
            raise StorageError() from e
        except SQLAlchemyError as e:
            log.error(f"存储操作失败: {operation}: {e}")
            raise StorageError() from e

    async def load_book(self, book_id: int) -> Optional[BookState]:
        """读取书籍的评论集合与聚合值，不存在时返回 None"""
        return await self._run(f"load_book({book_id})", self._load_book(book_id))

    async def _load_book(self, book_id: int) -> Optional[BookState]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Book.reviews, Book.total_rating, Book.total_reviews, Book.version)
                .where(Book.id == book_id)
            )
            row = result.one_or_none()

        if row is None:
            return None

        return BookState(
            book_id=book_id,
            reviews=reviews_from_json(book_id, row.reviews),
            total_rating=row.total_rating or 0,
            total_reviews=row.total_reviews or 0,
            version=row.version or 0,
        )

    async def persist_book_aggregate(
        self,
        book_id: int,
        reviews: Dict[int, Review],
        total_rating: int,
        total_reviews: int,
        expected_version: int,
    ) -> bool:
        """
        整体写入评论集合与聚合值

        仅当库中版本号仍为 expected_version 时写入成功；
        返回 False 表示期间已被其他写入修改（冲突）
        """
        return await self._run(
            f"persist_book_aggregate({book_id})",
            self._persist(book_id, reviews, total_rating, total_reviews, expected_version),
        )

    async def _persist(
        self,
        book_id: int,
        reviews: Dict[int, Review],
        total_rating: int,
        total_reviews: int,
        expected_version: int,
    ) -> bool:
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                update(Book)
                .where(Book.id == book_id, Book.version == expected_version)
                .values(
                    reviews=reviews_to_json(reviews),
                    total_rating=total_rating,
                    total_reviews=total_reviews,
                    version=Book.version + 1,
                )
            )
            return result.rowcount == 1

    async def load_user_token(self, user_id: int) -> Optional[UserToken]:
        """读取用户当前令牌，用户不存在时返回 None"""
        return await self._run(f"load_user_token({user_id})", self._load_user_token(user_id))

    async def _load_user_token(self, user_id: int) -> Optional[UserToken]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(User.token, User.token_issued_at).where(User.id == user_id)
            )
            row = result.one_or_none()

        if row is None:
            return None
        return UserToken(token=row.token, issued_at=row.token_issued_at)
