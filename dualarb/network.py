"""
DualArb 网络管理器

每条链一个异步网络层，提供以下功能:
- RPC 端点故障转移（只读调用，最多 MAX_RETRIES 轮）
- 速率限制的指数退避
- EIP-1559 和 Legacy Gas 处理
- 写操作（广播、等待收据）只尝试一次，错误原样抛出以便分类
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider
from web3.types import TxParams, TxReceipt, Wei

from .config_loader import ChainConfig
from .errors import RpcUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "GasParams",
    "NetworkManager",
    "NetworkState",
    "RPCHealth",
    "RpcUnavailableError",
    "TimeExhausted",
]


class NetworkState(Enum):
    """网络连接状态"""
    DISCONNECTED = "disconnected"  # 已断开
    CONNECTING = "connecting"      # 连接中
    CONNECTED = "connected"        # 已连接
    DEGRADED = "degraded"          # 降级（部分 RPC 失败但仍可用）


@dataclass
class GasParams:
    """交易提交的 Gas 参数"""

    gas_limit: Optional[int] = None

    # EIP-1559 字段
    max_fee_per_gas: Optional[Wei] = None
    max_priority_fee_per_gas: Optional[Wei] = None

    # Legacy 字段
    gas_price: Optional[Wei] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None

    def to_tx_params(self) -> Dict[str, Any]:
        """转换为交易参数字典"""
        params: Dict[str, Any] = {}

        if self.gas_limit:
            params["gas"] = self.gas_limit

        if self.is_eip1559:
            params["maxFeePerGas"] = self.max_fee_per_gas
            params["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        else:
            params["gasPrice"] = self.gas_price

        return params


@dataclass
class RPCHealth:
    """单个 RPC 端点的健康指标"""

    url: str
    is_healthy: bool = True
    last_success: float = 0.0
    last_failure: float = 0.0
    consecutive_failures: int = 0
    avg_latency_ms: float = 0.0
    total_requests: int = 0

    def record_success(self, latency_ms: float) -> None:
        self.is_healthy = True
        self.last_success = time.time()
        self.consecutive_failures = 0
        self.total_requests += 1

        # 指数移动平均
        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.8 * self.avg_latency_ms + 0.2 * latency_ms

    def record_failure(self) -> None:
        self.last_failure = time.time()
        self.consecutive_failures += 1
        self.total_requests += 1

        # 连续失败3次后标记为不健康
        if self.consecutive_failures >= 3:
            self.is_healthy = False


class NetworkManager:
    """
    单链异步网络管理器

    功能特性:
    - 连接错误时自动切换 RPC 端点（只读调用）
    - HTTP 429 错误时使用指数退避
    - 支持 EIP-1559 和 Legacy Gas 定价
    - 追踪每个 RPC 端点的健康状态

    只读调用耗尽所有端点后抛出 RpcUnavailableError，由调用方决定是否重试。
    写操作从不在这一层重试，以免重复广播。

    使用示例:
        >>> async with NetworkManager(registry.get(56)) as network:
        ...     block = await network.get_block_number()
    """

    def __init__(self, config: ChainConfig) -> None:
        self.config = config
        self.chain_id = config.chain_id
        self.gas_config = config.gas_config

        self._rpc_urls = config.rpc_urls
        self._current_rpc_index = 0
        self._rpc_health: Dict[str, RPCHealth] = {
            url: RPCHealth(url=url) for url in self._rpc_urls
        }

        self._web3: Optional[AsyncWeb3] = None

        self._max_passes = max(1, config.max_retries)
        self._base_delay = 0.5
        self._max_delay = 30.0
        self._timeout = aiohttp.ClientTimeout(total=config.rpc_timeout)

        self._state = NetworkState.DISCONNECTED
        self._lock = asyncio.Lock()

    @property
    def current_rpc_url(self) -> str:
        return self._rpc_urls[self._current_rpc_index]

    @property
    def state(self) -> NetworkState:
        return self._state

    @property
    def w3(self) -> AsyncWeb3:
        """获取 Web3 实例，首次访问时惰性创建"""
        if self._web3 is None:
            self._create_web3_instance()
        return self._web3

    async def __aenter__(self) -> "NetworkManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """
        建立与区块链的连接并验证链 ID

        链 ID 不匹配只记录警告；验证失败时切换到下一个端点，
        仍失败则保持 DEGRADED 状态，后续调用会继续故障转移。
        """
        self._state = NetworkState.CONNECTING
        self._create_web3_instance()

        try:
            chain_id = await self.get_chain_id()
        except RpcUnavailableError as e:
            self._state = NetworkState.DEGRADED
            logger.warning(f"{self.config.name} 连接验证失败，进入降级状态: {e}")
            return

        if chain_id != self.chain_id:
            logger.warning(f"链 ID 不匹配: 期望 {self.chain_id}，实际 {chain_id}")
        self._state = NetworkState.CONNECTED
        logger.info(f"已连接到 {self.config.name}，使用 {self.current_rpc_url}")

    async def disconnect(self) -> None:
        if self._web3 is not None:
            provider = self._web3.provider
            if hasattr(provider, "disconnect"):
                await provider.disconnect()
        self._web3 = None
        self._state = NetworkState.DISCONNECTED
        logger.info(f"已断开与 {self.config.name} 的连接")

    def _create_web3_instance(self) -> None:
        """使用当前 RPC URL 创建 Web3 实例"""
        provider = AsyncHTTPProvider(
            endpoint_uri=self.current_rpc_url,
            request_kwargs={"timeout": self._timeout},
        )
        self._web3 = AsyncWeb3(provider)

        # BSC / Polygon 区块头带有额外数据
        if self.config.poa:
            self._web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    async def _switch_to_next_rpc(self) -> None:
        """切换到下一个 RPC 端点，优先选择健康的节点"""
        async with self._lock:
            original_index = self._current_rpc_index

            for _ in range(len(self._rpc_urls)):
                self._current_rpc_index = (self._current_rpc_index + 1) % len(self._rpc_urls)
                health = self._rpc_health[self.current_rpc_url]

                if health.is_healthy:
                    logger.info(f"切换 RPC 到: {self.current_rpc_url}")
                    self._create_web3_instance()
                    return

            logger.warning("所有 RPC 都标记为不健康，正在重置健康状态")
            for health in self._rpc_health.values():
                health.is_healthy = True
                health.consecutive_failures = 0

            self._current_rpc_index = (original_index + 1) % len(self._rpc_urls)
            self._create_web3_instance()
            self._state = NetworkState.DEGRADED

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        带端点故障转移的只读操作执行

        合约 revert（ContractLogicError）和节点返回的 RPC 错误（Web3RPCError，
        速率限制除外）不是传输故障，直接抛出。

        异常:
            RpcUnavailableError: 所有尝试都用尽
        """
        last_error: Optional[Exception] = None
        total_attempts = self._max_passes * len(self._rpc_urls)

        for attempt in range(total_attempts):
            try:
                start_time = time.perf_counter()
                result = await operation()
                latency_ms = (time.perf_counter() - start_time) * 1000
                self._rpc_health[self.current_rpc_url].record_success(latency_ms)
                return result

            except ContractLogicError:
                raise

            except aiohttp.ClientResponseError as e:
                last_error = e
                if e.status == 429:
                    delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                    logger.warning(f"{operation_name} 被限速，等待 {delay:.2f} 秒后重试")
                    await asyncio.sleep(delay)
                    continue
                if e.status >= 500:
                    self._rpc_health[self.current_rpc_url].record_failure()
                    await self._switch_to_next_rpc()
                    continue
                raise RpcUnavailableError(f"HTTP {e.status}: {e.message}") from e

            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError, OSError) as e:
                last_error = e
                logger.warning(
                    f"{operation_name} 连接错误: {e}，"
                    f"切换 RPC（尝试 {attempt + 1}/{total_attempts}）"
                )
                self._rpc_health[self.current_rpc_url].record_failure()
                await self._switch_to_next_rpc()
                continue

            except Web3RPCError as e:
                # 节点返回的 JSON-RPC 错误对象，换端点也是同样的答复
                error_msg = str(e).lower()
                if "429" not in error_msg and "rate limit" not in error_msg:
                    raise
                last_error = e
                delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                logger.warning(f"{operation_name} RPC 速率限制，等待 {delay:.2f} 秒后重试")
                await asyncio.sleep(delay)
                continue

            except Web3Exception as e:
                last_error = e
                error_msg = str(e).lower()

                if "429" in error_msg or "rate limit" in error_msg:
                    delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                    logger.warning(f"{operation_name} RPC 速率限制，等待 {delay:.2f} 秒后重试")
                    await asyncio.sleep(delay)
                    continue

                self._rpc_health[self.current_rpc_url].record_failure()
                await self._switch_to_next_rpc()
                continue

        raise RpcUnavailableError(
            f"{self.config.name}: {operation_name} 的所有 {total_attempts} 次尝试都失败了。"
            f"最后的错误: {last_error}"
        )

    # =====================================================
    # 公共 API - 只读操作
    # =====================================================

    async def get_chain_id(self) -> int:
        async def _fetch():
            return await self.w3.eth.chain_id

        return await self._execute_with_retry(_fetch, "get_chain_id")

    async def get_block_number(self) -> int:
        async def _fetch():
            return await self.w3.eth.block_number

        return await self._execute_with_retry(_fetch, "get_block_number")

    async def get_nonce(self, address: str) -> int:
        """获取地址的 pending 交易计数"""
        async def _fetch():
            checksum_addr = self.w3.to_checksum_address(address)
            return await self.w3.eth.get_transaction_count(checksum_addr, "pending")

        return await self._execute_with_retry(_fetch, "get_nonce")

    async def call_contract(
        self,
        contract_address: str,
        data: bytes,
        block_identifier: Union[int, str] = "latest",
    ) -> bytes:
        """
        执行合约调用（只读）

        参数:
            contract_address: 合约地址
            data: 编码后的函数调用数据
        """
        async def _fetch():
            checksum_addr = self.w3.to_checksum_address(contract_address)
            return await self.w3.eth.call({"to": checksum_addr, "data": data}, block_identifier)

        return await self._execute_with_retry(_fetch, "call_contract")

    async def call_function(
        self,
        contract_address: str,
        abi: List[Dict[str, Any]],
        fn_name: str,
        *args: Any,
    ) -> Any:
        """通过 ABI 调用只读合约函数。每次尝试都绑定到当前端点"""
        async def _fetch():
            contract = self.w3.eth.contract(
                address=self.w3.to_checksum_address(contract_address), abi=abi
            )
            return await contract.functions[fn_name](*args).call()

        return await self._execute_with_retry(_fetch, fn_name)

    async def build_transaction(
        self,
        contract_address: str,
        abi: List[Dict[str, Any]],
        fn_name: str,
        args: Sequence[Any],
        tx_params: TxParams,
    ) -> Dict[str, Any]:
        """
        构建合约写交易（未签名）

        未提供 gas 时 web3 会执行 estimate_gas，模拟 revert 会以
        ContractLogicError 抛出。
        """
        async def _build():
            contract = self.w3.eth.contract(
                address=self.w3.to_checksum_address(contract_address), abi=abi
            )
            return await contract.functions[fn_name](*args).build_transaction(tx_params)

        return await self._execute_with_retry(_build, f"build_{fn_name}")

    # =====================================================
    # Gas 价格管理
    # =====================================================

    async def get_gas_params(
        self,
        gas_limit: Optional[int] = None,
        speed: str = "fast",
    ) -> GasParams:
        """
        获取交易提交的 Gas 参数

        根据链配置选择 EIP-1559 或 Legacy。
        """
        speed_multipliers = {"slow": 0.9, "standard": 1.0, "fast": 1.2}
        speed_mult = speed_multipliers.get(speed, 1.0)

        if self.gas_config.type == "eip1559":
            return await self._get_eip1559_gas_params(gas_limit, speed_mult)
        return await self._get_legacy_gas_params(gas_limit, speed_mult)

    async def _get_eip1559_gas_params(self, gas_limit: Optional[int], speed_mult: float) -> GasParams:
        async def _fetch():
            return await self.w3.eth.get_block("latest")

        block = await self._execute_with_retry(_fetch, "get_base_fee")

        base_fee = block.get("baseFeePerGas", 0)
        if base_fee == 0:
            logger.warning(f"{self.config.name} 未找到 baseFee，回退到 Legacy 模式")
            return await self._get_legacy_gas_params(gas_limit, speed_mult)

        async def _fetch_tip():
            return await self.w3.eth.max_priority_fee

        priority_fee = await self._execute_with_retry(_fetch_tip, "get_priority_fee")
        priority_fee = Wei(int(priority_fee * self.gas_config.priority_fee_multiplier * speed_mult))

        # 最大费用 = 2 * baseFee + priorityFee
        max_fee = Wei(int((base_fee * 2 + priority_fee) * self.gas_config.max_fee_multiplier * speed_mult))

        return GasParams(
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def _get_legacy_gas_params(self, gas_limit: Optional[int], speed_mult: float) -> GasParams:
        async def _fetch():
            return await self.w3.eth.gas_price

        gas_price = await self._execute_with_retry(_fetch, "get_gas_price")
        adjusted_price = Wei(int(gas_price * self.gas_config.gas_price_multiplier * speed_mult))

        return GasParams(gas_limit=gas_limit, gas_price=adjusted_price)

    # =====================================================
    # 交易管理 - 只尝试一次
    # =====================================================

    async def send_raw_transaction(self, signed_tx: bytes) -> str:
        """
        广播已签名的交易

        不重试：重复广播可能导致双重提交。
        """
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx)
        return self.w3.to_hex(tx_hash)

    async def wait_for_transaction_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_latency: float = 0.5,
    ) -> TxReceipt:
        """
        等待交易被打包

        异常:
            TimeExhausted: 超时仍未被打包
        """
        return await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency
        )

    # =====================================================
    # 健康监控
    # =====================================================

    def get_rpc_health(self) -> Dict[str, RPCHealth]:
        return self._rpc_health.copy()

    async def ping(self) -> float:
        """ping 当前 RPC 并返回往返时间（毫秒）"""
        start = time.perf_counter()
        await self.get_block_number()
        return (time.perf_counter() - start) * 1000
