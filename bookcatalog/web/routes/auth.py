"""
认证路由
处理用户注册与登录
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookcatalog.database import get_db
from bookcatalog.models import User
from bookcatalog.security import MAX_PASSWORD_BYTES, generate_session_token, hash_password, verify_password
from bookcatalog.utils.logger import log

router = APIRouter()


class SignupRequest(BaseModel):
    """注册请求模型"""
    username: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """登录请求模型"""
    username: Optional[str] = None
    password: Optional[str] = None


def _issue_token(user: User) -> str:
    """签发新令牌并覆盖旧令牌（旧会话随即失效）"""
    user.token = generate_session_token()
    user.token_issued_at = datetime.utcnow()
    return user.token


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    signup_data: SignupRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    用户注册
    成功后直接签发令牌
    """
    username = (signup_data.username or "").strip()
    name = (signup_data.name or "").strip()
    password = signup_data.password or ""

    if not username or not name or not password:
        raise HTTPException(status_code=400, detail="Kindly fill required details")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise HTTPException(status_code=400, detail="Password is too long")

    result = await db.execute(
        select(User).where(User.username == username)
    )
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="The username is unavailable. Try another...")

    user = User(
        username=username,
        name=name,
        password_hash=hash_password(password),
    )
    token = _issue_token(user)
    db.add(user)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="The username is unavailable. Try another...")
    await db.refresh(user)

    log.info(f"新用户注册: {user.username}")

    return {
        "message": "User created successfully",
        "user_id": user.id,
        "username": user.username,
        "name": user.name,
        "token": token,
    }


@router.post("/login")
async def login(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    用户登录
    每次登录都会生成新令牌，之前的令牌失效
    """
    if not login_data.username or not login_data.password:
        raise HTTPException(status_code=400, detail="Kindly fill the required details")

    result = await db.execute(
        select(User).where(User.username == login_data.username)
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(status_code=404, detail="User not present")

    if not verify_password(login_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect Password")

    token = _issue_token(user)
    await db.commit()

    log.info(f"用户登录: {user.username}")

    return {
        "message": "Login Successful",
        "user_id": user.id,
        "name": user.name,
        "username": user.username,
        "token": token,
    }
