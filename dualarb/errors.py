"""
DualArb 错误分类

所有跨组件传递的失败都带有一个 ErrorKind，调用方据此决定
是否可以重试（只有 RPC_UNAVAILABLE 可以由调用方重试只读报价）。
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """失败类型词汇表"""

    # 配置错误 - 在任何链上 I/O 之前拒绝
    UNSUPPORTED_CHAIN = "UnsupportedChain"
    UNKNOWN_TOKEN = "UnknownToken"
    INVALID_SLIPPAGE = "InvalidSlippage"
    INVALID_CONFIG = "InvalidConfig"

    # 瞬时基础设施错误
    RPC_UNAVAILABLE = "RpcUnavailable"

    # 执行错误 - 对该 leg 是终态
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    SLIPPAGE_EXCEEDED = "SlippageExceeded"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    PAIR_NOT_FOUND = "PairNotFound"
    ALLOWANCE_INSUFFICIENT = "AllowanceInsufficient"
    UNKNOWN = "Unknown"

    # 阈值错误
    BELOW_THRESHOLD = "BelowThreshold"
    QUOTE_UNAVAILABLE = "QuoteUnavailable"

    @property
    def is_retryable(self) -> bool:
        """只有瞬时 RPC 故障值得调用方重试"""
        return self is ErrorKind.RPC_UNAVAILABLE


# 执行阶段可能出现的失败（也是模拟执行器抽样的词汇表）
EXECUTION_ERROR_KINDS = (
    ErrorKind.INSUFFICIENT_FUNDS,
    ErrorKind.SLIPPAGE_EXCEEDED,
    ErrorKind.DEADLINE_EXCEEDED,
    ErrorKind.PAIR_NOT_FOUND,
    ErrorKind.ALLOWANCE_INSUFFICIENT,
    ErrorKind.UNKNOWN,
)


class ArbitrageError(Exception):
    """DualArb 所有异常的基类"""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ConfigurationError(ArbitrageError):
    """配置错误，永远不会自动重试"""

    kind = ErrorKind.INVALID_CONFIG


class ConfigValidationError(ConfigurationError):
    """链或交易对配置验证失败时抛出"""
    pass


class SettingsError(ConfigurationError):
    """外部设置存储中的值无法解析"""
    pass


class UnsupportedChainError(ConfigurationError):
    """链 ID 未在注册表中配置"""

    kind = ErrorKind.UNSUPPORTED_CHAIN


class UnknownTokenError(ConfigurationError):
    """代币符号在该链上没有映射"""

    kind = ErrorKind.UNKNOWN_TOKEN


class InvalidSlippageError(ConfigurationError):
    """slippageBps 不在 [0, 10000] 范围内"""

    kind = ErrorKind.INVALID_SLIPPAGE


class RpcUnavailableError(ArbitrageError):
    """所有 RPC 端点都不可用（网络/传输故障）"""

    kind = ErrorKind.RPC_UNAVAILABLE


class BelowThresholdError(ArbitrageError):
    """预估利润低于最低利润要求，未触碰任何链"""

    kind = ErrorKind.BELOW_THRESHOLD


class QuoteUnavailableError(ArbitrageError):
    """无法为交易对获取报价"""

    kind = ErrorKind.QUOTE_UNAVAILABLE
