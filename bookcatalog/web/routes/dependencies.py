"""
API 依赖注入
提供评分引擎、令牌校验器以及 Bearer 令牌提取
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bookcatalog.core.aggregation import AggregationEngine
from bookcatalog.core.errors import AuthError
from bookcatalog.core.token_validator import TokenValidator

# auto_error=False：缺少请求头时由我们自己返回 401
bearer_scheme = HTTPBearer(auto_error=False)


def get_review_engine(request: Request) -> AggregationEngine:
    return request.app.state.review_engine


def get_token_validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    从 Authorization: Bearer <token> 中提取令牌

    Raises:
        AuthError: 请求头缺失或格式不正确
    """
    if credentials is None or not credentials.credentials:
        raise AuthError("Authorization header missing")
    return credentials.credentials
