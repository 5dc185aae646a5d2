"""
书籍路由
新建书籍、按 ID 范围列出、搜索、详情
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookcatalog.core.aggregation import format_average
from bookcatalog.core.review_store import reviews_from_json, reviews_to_json
from bookcatalog.core.token_validator import TokenValidator
from bookcatalog.database import get_db
from bookcatalog.models import Book
from bookcatalog.utils.logger import log
from bookcatalog.web.routes.dependencies import get_bearer_token, get_token_validator

router = APIRouter()


class BookCreate(BaseModel):
    """新建书籍请求"""
    user_id: Optional[int] = None
    book_name: Optional[str] = None
    author_name: Optional[str] = None


def _book_summary(book: Book) -> dict:
    return {"id": book.id, "book_name": book.book_name, "author_name": book.author_name}


@router.post("/books", status_code=status.HTTP_201_CREATED)
async def create_book(
    book_data: BookCreate,
    token: str = Depends(get_bearer_token),
    validator: TokenValidator = Depends(get_token_validator),
    db: AsyncSession = Depends(get_db)
):
    """新建书籍（需要登录）"""
    book_name = (book_data.book_name or "").strip()
    author_name = (book_data.author_name or "").strip()
    if book_data.user_id is None or not book_name or not author_name:
        raise HTTPException(status_code=400, detail="Kindly fill all required details")

    await validator.require(book_data.user_id, token)

    result = await db.execute(
        select(Book.id).where(Book.book_name == book_name, Book.author_name == author_name)
    )
    if result.first() is not None:
        raise HTTPException(status_code=409, detail="The book already exists")

    book = Book(book_name=book_name, author_name=author_name, reviews=[], total_rating=0, total_reviews=0)
    db.add(book)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="The book already exists")
    await db.refresh(book)

    log.info(f"新建书籍: id={book.id} {book.book_name} / {book.author_name} (user_id={book_data.user_id})")

    return {"message": "The required entry for book is created", "book": _book_summary(book)}


@router.get("/books")
async def list_books(
    start_id: Optional[int] = Query(None),
    end_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """按 ID 范围列出书籍（闭区间）"""
    if start_id is None or end_id is None:
        raise HTTPException(status_code=400, detail="Kindly fill the required details")
    if start_id > end_id:
        raise HTTPException(status_code=400, detail="start_id must not exceed end_id")

    result = await db.execute(
        select(Book)
        .where(Book.id >= start_id, Book.id <= end_id)
        .order_by(Book.id)
    )
    books = result.scalars().all()
    return {"books": [_book_summary(book) for book in books]}


@router.get("/books/search")
async def search_books(
    query: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """按书名或作者模糊搜索"""
    keyword = (query or "").strip()
    if not keyword:
        raise HTTPException(status_code=400, detail="Missing search query")

    pattern = f"%{keyword}%"
    result = await db.execute(
        select(Book)
        .where(or_(Book.book_name.ilike(pattern), Book.author_name.ilike(pattern)))
        .order_by(Book.id)
    )
    books = result.scalars().all()
    return {"results": [_book_summary(book) for book in books]}


@router.get("/books/{book_id}")
async def get_book(
    book_id: int,
    db: AsyncSession = Depends(get_db)
):
    """书籍详情，包含平均分与评论"""
    book = await db.get(Book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    total_rating = book.total_rating or 0
    total_reviews = book.total_reviews or 0

    return {
        **_book_summary(book),
        "average_rating": format_average(total_rating, total_reviews),
        "total_reviews": total_reviews,
        "reviews": reviews_to_json(reviews_from_json(book.id, book.reviews)),
    }
