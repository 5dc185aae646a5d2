"""
评论路由
评论的新增、查询、修改、删除
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, StrictInt

from bookcatalog.core.aggregation import AggregationEngine
from bookcatalog.core.errors import ValidationError
from bookcatalog.core.token_validator import TokenValidator
from bookcatalog.web.routes.dependencies import get_bearer_token, get_review_engine, get_token_validator

router = APIRouter()


class ReviewRequest(BaseModel):
    """新增/修改评论请求"""
    user_id: Optional[int] = None
    review: Optional[str] = None
    rating: Optional[StrictInt] = None  # 不做类型转换："4"、4.0、true 均视为非法


class ReviewDeleteRequest(BaseModel):
    """删除评论请求"""
    user_id: Optional[int] = None


def _check_review_request(data: ReviewRequest, engine: AggregationEngine) -> None:
    if data.user_id is None or data.review is None or data.rating is None:
        raise ValidationError("Required fields missing")
    engine.validate_review(data.review, data.rating)


@router.get("/books/{book_id}/reviews")
async def get_book_reviews(
    book_id: int,
    engine: AggregationEngine = Depends(get_review_engine),
):
    """获取平均分与评论列表"""
    aggregate = await engine.get_aggregate(book_id)
    return aggregate.to_dict()


@router.post("/books/{book_id}/reviews", status_code=201)
async def create_review(
    book_id: int,
    data: ReviewRequest,
    token: str = Depends(get_bearer_token),
    engine: AggregationEngine = Depends(get_review_engine),
    validator: TokenValidator = Depends(get_token_validator),
):
    """新增评论，每个用户每本书仅一条"""
    _check_review_request(data, engine)
    await validator.require(data.user_id, token)

    await engine.create_review(book_id, data.user_id, data.review, data.rating)
    return {"message": "Review added successfully"}


@router.put("/reviews/{book_id}")
async def update_review(
    book_id: int,
    data: ReviewRequest,
    token: str = Depends(get_bearer_token),
    engine: AggregationEngine = Depends(get_review_engine),
    validator: TokenValidator = Depends(get_token_validator),
):
    """修改自己的评论"""
    _check_review_request(data, engine)
    await validator.require(data.user_id, token)

    await engine.update_review(book_id, data.user_id, data.review, data.rating)
    return {"message": "Review updated successfully"}


@router.delete("/reviews/{book_id}")
async def delete_review(
    book_id: int,
    data: ReviewDeleteRequest,
    token: str = Depends(get_bearer_token),
    engine: AggregationEngine = Depends(get_review_engine),
    validator: TokenValidator = Depends(get_token_validator),
):
    """删除自己的评论"""
    if data.user_id is None:
        raise ValidationError("Missing user_id")
    await validator.require(data.user_id, token)

    await engine.delete_review(book_id, data.user_id)
    return {"message": "Review deleted successfully"}
