"""
密码哈希与会话令牌
"""
import secrets
from typing import Optional

import bcrypt

from bookcatalog.config import settings

# bcrypt 只处理前 72 字节
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """生成 bcrypt 密码哈希"""
    salt = bcrypt.gensalt(rounds=rounds or settings.security.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """校验密码，哈希格式不正确时视为不匹配"""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_session_token() -> str:
    """生成不透明的会话令牌"""
    return secrets.token_urlsafe(settings.security.token_bytes)
