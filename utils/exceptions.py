"""
统一异常定义模块
提供报价引擎的异常类和错误处理机制
"""

from typing import Optional, Dict, Any


class QuoteSystemError(Exception):
    """报价系统基础异常类"""

    http_status: int = 500

    def __init__(self, message: str, error_code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ConfigurationError(QuoteSystemError):
    """配置相关错误"""
    pass


class ValidationError(QuoteSystemError):
    """输入数据验证错误（调用方错误）"""

    http_status = 400

    @property
    def fields(self) -> list:
        """出错字段列表"""
        return [error.get('field') for error in self.context.get('errors', [])]


class ForbiddenTransition(QuoteSystemError):
    """状态流转不被允许"""

    http_status = 403

    def __init__(self, current_status: str, target_status: str,
                 actor_id: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(
            f"Transition from '{current_status}' to '{target_status}' is not allowed",
            error_code or ErrorCodes.LIFECYCLE_FORBIDDEN_TRANSITION,
            {'current_status': current_status, 'target_status': target_status, 'actor_id': actor_id}
        )
        self.current_status = current_status
        self.target_status = target_status


class QuoteAccessDenied(QuoteSystemError):
    """操作者无权访问该报价"""

    http_status = 403


class QuoteNotFound(QuoteSystemError):
    """报价不存在"""

    http_status = 404


class StorageError(QuoteSystemError):
    """存储层错误基类"""
    pass


class StorageUnavailable(StorageError):
    """存储不可用（调用方可重试）"""

    http_status = 503


class UniquenessViolation(StorageError):
    """唯一约束冲突（仅由编号分配器内部处理）"""

    http_status = 409


class DatabaseError(StorageError):
    """数据库相关错误"""
    pass


class AllocationExhausted(QuoteSystemError):
    """报价编号分配失败（包括后备后缀也冲突）"""

    http_status = 503


# 错误代码常量
class ErrorCodes:
    """错误代码常量"""

    # 配置错误
    CONFIG_NOT_FOUND = "CONFIG_001"
    CONFIG_INVALID_FORMAT = "CONFIG_002"
    CONFIG_MISSING_KEY = "CONFIG_003"
    CONFIG_INVALID_VALUE = "CONFIG_004"

    # 数据库错误
    DB_CONNECTION_FAILED = "DB_001"
    DB_QUERY_FAILED = "DB_002"
    DB_TRANSACTION_FAILED = "DB_003"
    DB_INTEGRITY_ERROR = "DB_004"
    DB_UNIQUE_VIOLATION = "DB_005"

    # 验证错误
    VALIDATION_INVALID_FIELD = "VAL_001"
    VALIDATION_INVALID_DATE = "VAL_002"
    VALIDATION_INVALID_AMOUNT = "VAL_003"
    VALIDATION_MISSING_REQUIRED_FIELD = "VAL_004"

    # 报价业务错误
    LIFECYCLE_FORBIDDEN_TRANSITION = "QUOTE_001"
    QUOTE_ACCESS_DENIED = "QUOTE_002"
    QUOTE_NOT_FOUND = "QUOTE_003"
    NUMBER_ALLOCATION_EXHAUSTED = "QUOTE_004"


def create_error_response(error: QuoteSystemError,
                          include_traceback: bool = False) -> Dict[str, Any]:
    """创建标准化的错误响应（供宿主传输层映射为 HTTP 响应）"""
    response = {
        "error": True,
        "status": error.http_status,
        "error_code": error.error_code,
        "message": error.message,
        "context": error.context
    }

    if include_traceback:
        import traceback
        response["traceback"] = traceback.format_exc()

    return response
