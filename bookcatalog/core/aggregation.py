"""
评分聚合引擎

维护每本书的 (评论集合, total_rating, total_reviews) 三元组：
- 每个用户对每本书只能有一条评论
- total_reviews 始终等于评论条数，total_rating 始终等于评分之和
- 三元组总是整体写入

同一本书的 读取 -> 计算 -> 写入 在进程内按书加锁串行执行，
写入时再以版本号做比较交换，防止跨进程的丢失更新
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from bookcatalog.core.errors import (
    BookNotFoundError,
    DuplicateReviewError,
    ReviewNotFoundError,
    StorageError,
    ValidationError,
)
from bookcatalog.core.review_store import BookState, Review, ReviewStore
from bookcatalog.utils.logger import log

NextState = Tuple[Dict[int, Review], int, int]


def _detached_persist_logger(book_id: int, action: str) -> Callable[["asyncio.Future[bool]"], None]:
    def _on_done(task: "asyncio.Future[bool]") -> None:
        if task.cancelled():
            log.error(f"评论 {action} 写入被取消: book_id={book_id}")
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"评论 {action} 写入失败（调用方已取消）: book_id={book_id} error={exc!r}")
        elif not task.result():
            log.warning(f"评论 {action} 写入冲突（调用方已取消），未重试: book_id={book_id}")
        else:
            log.info(f"评论 {action} 完成（调用方已取消）: book_id={book_id}")

    return _on_done


def format_average(total_rating: int, total_reviews: int) -> str:
    """平均分，保留两位小数；没有评论时为 "0" """
    if total_reviews > 0:
        return f"{total_rating / total_reviews:.2f}"
    return "0"


@dataclass(frozen=True)
class Aggregate:
    """书籍评分汇总"""
    book_id: int
    average_rating: str
    total_rating: int
    total_reviews: int
    reviews: List[Review]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_id": self.book_id,
            "average_rating": self.average_rating,
            "total_reviews": self.total_reviews,
            "reviews": [review.to_dict() for review in self.reviews],
        }


class BookLockRegistry:
    """按 book_id 分配的互斥锁，无人等待时自动回收"""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, book_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(book_id)
        if lock is None:
            lock = self._locks[book_id] = asyncio.Lock()
            self._holders[book_id] = 0
        self._holders[book_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[book_id] -= 1
            if self._holders[book_id] == 0:
                del self._holders[book_id]
                del self._locks[book_id]

    def __len__(self) -> int:
        return len(self._locks)


class AggregationEngine:
    """评论增删改与聚合值维护"""

    def __init__(
        self,
        store: ReviewStore,
        min_rating: int = 1,
        max_rating: int = 5,
        max_conflict_retries: int = 3,
    ):
        self.store = store
        self.min_rating = min_rating
        self.max_rating = max_rating
        self.max_conflict_retries = max_conflict_retries
        self.locks = BookLockRegistry()

    def validate_review(self, body: Any, rating: Any) -> Tuple[str, int]:
        """校验评论内容与评分，返回规范化后的 (body, rating)"""
        if body is None or not isinstance(body, str) or not body.strip():
            raise ValidationError("Review text is required")
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError("Rating must be an integer")
        if not self.min_rating <= rating <= self.max_rating:
            raise ValidationError(f"Rating must be between {self.min_rating} and {self.max_rating}")
        return body.strip(), rating

    async def create_review(self, book_id: int, user_id: int, body: str, rating: int) -> BookState:
        """新增评论；该用户已有评论时抛出 DuplicateReviewError"""
        body, rating = self.validate_review(body, rating)

        def compute(state: BookState) -> NextState:
            if user_id in state.reviews:
                raise DuplicateReviewError()
            reviews = dict(state.reviews)
            reviews[user_id] = Review(user_id=user_id, review=body, rating=rating)
            return reviews, state.total_rating + rating, state.total_reviews + 1

        return await self._mutate(book_id, "create", compute, user_id)

    async def update_review(self, book_id: int, user_id: int, body: str, rating: int) -> BookState:
        """修改已有评论；不会隐式新建"""
        body, rating = self.validate_review(body, rating)

        def compute(state: BookState) -> NextState:
            old = state.reviews.get(user_id)
            if old is None:
                raise ReviewNotFoundError()
            reviews = dict(state.reviews)
            reviews[user_id] = Review(user_id=user_id, review=body, rating=rating)
            return reviews, state.total_rating + (rating - old.rating), state.total_reviews

        return await self._mutate(book_id, "update", compute, user_id)

    async def delete_review(self, book_id: int, user_id: int) -> BookState:
        """删除评论"""

        def compute(state: BookState) -> NextState:
            removed = state.reviews.get(user_id)
            if removed is None:
                raise ReviewNotFoundError()
            reviews = {uid: r for uid, r in state.reviews.items() if uid != user_id}
            # 计数已损坏时夹到 0，不报错
            return reviews, state.total_rating - removed.rating, max(state.total_reviews - 1, 0)

        return await self._mutate(book_id, "delete", compute, user_id)

    async def rebuild_aggregate(self, book_id: int) -> BookState:
        """根据评论集合重新计算聚合值，用于修复损坏的数据"""

        def compute(state: BookState) -> NextState:
            reviews = dict(state.reviews)
            return reviews, sum(r.rating for r in reviews.values()), len(reviews)

        return await self._mutate(book_id, "rebuild", compute)

    async def get_aggregate(self, book_id: int) -> Aggregate:
        """读取平均分与评论列表，无需鉴权"""
        state = await self.store.load_book(book_id)
        if state is None:
            raise BookNotFoundError()
        return Aggregate(
            book_id=book_id,
            average_rating=format_average(state.total_rating, state.total_reviews),
            total_rating=state.total_rating,
            total_reviews=state.total_reviews,
            reviews=list(state.reviews.values()),
        )

    async def _mutate(
        self,
        book_id: int,
        action: str,
        compute: Callable[[BookState], NextState],
        user_id: Optional[int] = None,
    ) -> BookState:
        async with self.locks.hold(book_id):
            for attempt in range(1, self.max_conflict_retries + 1):
                state = await self.store.load_book(book_id)
                if state is None:
                    raise BookNotFoundError()

                reviews, total_rating, total_reviews = compute(state)

                # 已发出的写入不随调用方取消而中断
                task = asyncio.ensure_future(
                    self.store.persist_book_aggregate(
                        book_id, reviews, total_rating, total_reviews, state.version
                    )
                )
                try:
                    persisted = await asyncio.shield(task)
                except asyncio.CancelledError:
                    # 调用方已离开，写入结果只能在这里记录
                    task.add_done_callback(_detached_persist_logger(book_id, action))
                    raise
                if persisted:
                    log.info(
                        f"评论 {action} 完成: book_id={book_id} user_id={user_id} "
                        f"total_rating={total_rating} total_reviews={total_reviews}"
                    )
                    return BookState(
                        book_id=book_id,
                        reviews=reviews,
                        total_rating=total_rating,
                        total_reviews=total_reviews,
                        version=state.version + 1,
                    )

                log.warning(f"评论 {action} 写入冲突，重新读取: book_id={book_id} attempt={attempt}")

        raise StorageError("Concurrent modification, please retry")
