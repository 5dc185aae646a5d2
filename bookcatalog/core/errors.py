"""
评分子系统异常
每个异常带有对应的 HTTP 状态码，由 Web 层统一渲染
"""


class CatalogError(Exception):
    """评分子系统异常基类"""
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CatalogError):
    """请求字段缺失或不合法"""
    status_code = 400
    default_message = "Required fields missing"


class AuthError(CatalogError):
    """身份或令牌校验失败"""
    status_code = 401
    default_message = "Unauthorized access"


class NotFoundError(CatalogError):
    status_code = 404
    default_message = "Not found"


class BookNotFoundError(NotFoundError):
    default_message = "Book not found"


class ReviewNotFoundError(NotFoundError):
    default_message = "Review not found"


class ConflictError(CatalogError):
    status_code = 409
    default_message = "Conflict"


class DuplicateReviewError(ConflictError):
    """同一用户对同一本书只能有一条评论"""
    default_message = "Review already exists. Use edit instead."


class StorageError(CatalogError):
    """存储层暂时性故障，整个操作可以安全重试"""
    status_code = 503
    default_message = "Storage temporarily unavailable, please retry"
