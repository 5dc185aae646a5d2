"""
令牌校验
确认请求中的令牌与用户当前登记的令牌一致
"""
import hmac
from datetime import datetime, timedelta
from typing import Optional

from bookcatalog.core.errors import AuthError
from bookcatalog.core.review_store import ReviewStore
from bookcatalog.utils.logger import log


class TokenValidator:
    """只读校验，不修改任何状态"""

    def __init__(self, store: ReviewStore, expire_days: int = 0):
        self.store = store
        self.expire_days = expire_days

    async def authorize(self, user_id: int, presented_token: Optional[str]) -> bool:
        """
        校验令牌

        Args:
            user_id: 请求声称的用户 ID
            presented_token: 请求携带的令牌

        Returns:
            bool: 用户存在且令牌与登记值完全一致（且未过期）时为 True
        """
        if not presented_token:
            return False

        record = await self.store.load_user_token(user_id)
        if record is None or not record.token:
            return False

        if not hmac.compare_digest(record.token.encode("utf-8"), presented_token.encode("utf-8")):
            return False

        if self.expire_days > 0:
            if record.issued_at is None:
                return False
            if datetime.utcnow() - record.issued_at > timedelta(days=self.expire_days):
                return False

        return True

    async def require(self, user_id: int, presented_token: Optional[str]) -> None:
        """校验失败时抛出 AuthError"""
        if not await self.authorize(user_id, presented_token):
            log.info(f"令牌校验失败: user_id={user_id}")
            raise AuthError()
