"""
DualArb 配置加载器

负责加载和验证链注册表、交易对表以及环境变量中的敏感信息。
将静态 JSON 配置与环境变量结合，实现安全的凭证管理。

链注册表在启动时加载一次，之后只读，可以被多个协程并发读取。
"""

import json
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from web3 import Web3

from .errors import ConfigValidationError, UnknownTokenError, UnsupportedChainError

# 链表中每个条目必须包含的键（与外部配置表逐字节一致）
REQUIRED_CHAIN_KEYS = ("name", "rpcEndpoint", "routerAddress", "nativeTokenSymbol", "tokens")

REQUIRED_PAIR_KEYS = ("chainA", "chainB", "base", "quote", "tradingUnit")

DEFAULT_DECIMALS = 18
DEFAULT_FEE_RATE = Decimal("0.001")

ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


@dataclass(frozen=True)
class GasConfig:
    """区块链的 Gas 配置"""

    type: str = "legacy"  # "eip1559" 或 "legacy"
    priority_fee_multiplier: float = 1.1
    max_fee_multiplier: float = 1.5
    gas_price_multiplier: float = 1.1


@dataclass(frozen=True)
class ChainConfig:
    """单个区块链（一个 DEX 场所）的完整配置"""

    chain_id: int
    name: str
    rpc_endpoint: str
    router_address: str
    native_token: str
    tokens: Mapping[str, str]
    venue: str = ""
    decimals: Mapping[str, int] = field(default_factory=dict)
    fallback_rpc_endpoints: Tuple[str, ...] = ()
    gas_config: GasConfig = field(default_factory=GasConfig)
    poa: bool = False
    gas_estimate: Decimal = Decimal("0")

    # 运行时设置
    rpc_timeout: int = 10
    max_retries: int = 1

    @property
    def rpc_urls(self) -> List[str]:
        """主端点在前，备用端点按配置顺序排列"""
        return [self.rpc_endpoint, *self.fallback_rpc_endpoints]

    def token_address(self, symbol: str) -> str:
        """
        将代币符号解析为该链上的合约地址

        异常:
            UnknownTokenError: 符号在该链上没有映射
        """
        address = self.tokens.get(symbol.upper())
        if address is None:
            raise UnknownTokenError(f"代币 {symbol} 在链 {self.chain_id} ({self.name}) 上未配置")
        return address

    def token_decimals(self, symbol: str) -> int:
        return self.decimals.get(symbol.upper(), DEFAULT_DECIMALS)

    def symbol_for(self, address: str) -> Optional[str]:
        """反向查找地址对应的符号"""
        target = address.lower()
        for symbol, token_address in self.tokens.items():
            if token_address.lower() == target:
                return symbol
        return None


@dataclass(frozen=True)
class PairConfig:
    """一个跨链交易对（如 btc_usdt）的配置"""

    pair_id: str
    label: str
    chain_a: int
    chain_b: int
    base_symbols: Mapping[int, str]
    quote_symbol: str
    trading_unit: Decimal
    fee_rate: Decimal = DEFAULT_FEE_RATE
    initial_balances: Mapping[int, Tuple[Decimal, Decimal]] = field(default_factory=dict)

    @property
    def chain_ids(self) -> Tuple[int, int]:
        return (self.chain_a, self.chain_b)

    def base_symbol(self, chain_id: int) -> str:
        try:
            return self.base_symbols[chain_id]
        except KeyError:
            raise UnsupportedChainError(
                f"交易对 {self.pair_id} 没有为链 {chain_id} 配置基础代币"
            ) from None


def _require_address(label: str, value: Any) -> str:
    """验证地址格式并返回校验和地址"""
    if not isinstance(value, str) or not ADDRESS_RE.fullmatch(value):
        raise ConfigValidationError(f"{label} 的地址无效: {value}")
    return Web3.to_checksum_address(value)


def _to_decimal(label: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigValidationError(f"{label} 不是有效的数值: {value!r}") from None


class ChainRegistry:
    """
    链 ID 到 ChainConfig 的静态映射

    纯查找，无可变状态。新增场所只需要在 chains.json 中添加条目。

    使用示例:
        >>> registry = ChainRegistry.from_file("config/chains.json")
        >>> registry.resolve_token(56, "USDT")
    """

    def __init__(self, chains: Mapping[int, ChainConfig]) -> None:
        if len(chains) < 2:
            raise ConfigValidationError("链表至少需要两个条目（每个场所一个）")
        self._chains: Dict[int, ChainConfig] = dict(chains)

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        rpc_timeout: int = 10,
        max_retries: int = 1,
        rpc_overrides: Optional[Mapping[str, List[str]]] = None,
    ) -> "ChainRegistry":
        """
        从原始链表构建注册表

        参数:
            raw: {chainId: {name, rpcEndpoint, routerAddress, nativeTokenSymbol, tokens}}
            rpc_overrides: 链名称（大写）到 RPC 端点列表的覆盖
        """
        if not isinstance(raw, Mapping):
            raise ConfigValidationError("链配置必须是一个 JSON 对象")

        rpc_overrides = rpc_overrides or {}
        chains: Dict[int, ChainConfig] = {}
        for key, entry in raw.items():
            config = _parse_chain(key, entry, rpc_timeout, max_retries, rpc_overrides)
            chains[config.chain_id] = config
        return cls(chains)

    @classmethod
    def from_file(cls, path: Path, **kwargs: Any) -> "ChainRegistry":
        return cls.from_dict(_load_json_config(Path(path)), **kwargs)

    def get(self, chain_id: int) -> ChainConfig:
        """
        获取链配置

        异常:
            UnsupportedChainError: 链 ID 未配置
        """
        try:
            return self._chains[int(chain_id)]
        except (KeyError, TypeError, ValueError):
            available = ", ".join(str(c) for c in self._chains)
            raise UnsupportedChainError(
                f"链 '{chain_id}' 不受支持。可用的链: {available}"
            ) from None

    def resolve_token(self, chain_id: int, symbol: str) -> str:
        return self.get(chain_id).token_address(symbol)

    @property
    def chain_ids(self) -> List[int]:
        return list(self._chains)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._chains

    def __iter__(self) -> Iterator[ChainConfig]:
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)


def _parse_chain(
    key: str,
    entry: Mapping[str, Any],
    rpc_timeout: int,
    max_retries: int,
    rpc_overrides: Mapping[str, List[str]],
) -> ChainConfig:
    try:
        chain_id = int(key)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"链 ID 必须是整数: {key!r}") from None

    if not isinstance(entry, Mapping):
        raise ConfigValidationError(f"链 {chain_id} 的配置必须是 JSON 对象")

    for field_name in REQUIRED_CHAIN_KEYS:
        if field_name not in entry:
            raise ConfigValidationError(f"链 {chain_id} 的配置中缺少必需字段 '{field_name}'")

    tokens_raw = entry["tokens"]
    if not isinstance(tokens_raw, Mapping) or not tokens_raw:
        raise ConfigValidationError(f"链 {chain_id} 必须至少配置一个代币")

    tokens = {
        str(symbol).upper(): _require_address(f"链 {chain_id} 代币 {symbol}", address)
        for symbol, address in tokens_raw.items()
    }
    decimals = {str(s).upper(): int(d) for s, d in entry.get("decimals", {}).items()}

    gas_raw = entry.get("gasConfig", {})
    gas_type = entry.get("gasType", gas_raw.get("type", "legacy"))
    if gas_type not in ("eip1559", "legacy"):
        raise ConfigValidationError(
            f"链 {chain_id} 的 gasType 无效: 必须是 'eip1559' 或 'legacy'"
        )
    gas_config = GasConfig(
        type=gas_type,
        priority_fee_multiplier=gas_raw.get("priorityFeeMultiplier", 1.1),
        max_fee_multiplier=gas_raw.get("maxFeeMultiplier", 1.5),
        gas_price_multiplier=gas_raw.get("gasPriceMultiplier", 1.1),
    )

    name = str(entry["name"])
    rpc_urls = rpc_overrides.get(name.upper()) or [
        entry["rpcEndpoint"],
        *entry.get("fallbackRpcEndpoints", []),
    ]
    if not rpc_urls or not all(isinstance(url, str) and url for url in rpc_urls):
        raise ConfigValidationError(f"链 {chain_id} 必须至少配置一个 RPC 端点")

    return ChainConfig(
        chain_id=chain_id,
        name=name,
        rpc_endpoint=rpc_urls[0],
        router_address=_require_address(f"链 {chain_id} 路由器", entry["routerAddress"]),
        native_token=str(entry["nativeTokenSymbol"]),
        tokens=tokens,
        venue=str(entry.get("venue", name)),
        decimals=decimals,
        fallback_rpc_endpoints=tuple(rpc_urls[1:]),
        gas_config=gas_config,
        poa=bool(entry.get("poa", False)),
        gas_estimate=_to_decimal(f"链 {chain_id} gasEstimate", entry.get("gasEstimate", "0")),
        rpc_timeout=rpc_timeout,
        max_retries=max_retries,
    )


def parse_pairs(raw: Mapping[str, Any], registry: ChainRegistry) -> Dict[str, PairConfig]:
    """
    解析交易对表并对照注册表验证

    每个基础/报价代币符号都必须能在对应链上解析，
    因此配置错误会在启动时暴露，而不是在第一次扫描时。
    """
    if not isinstance(raw, Mapping) or not raw:
        raise ConfigValidationError("交易对配置必须是非空的 JSON 对象")

    pairs: Dict[str, PairConfig] = {}
    for pair_id, entry in raw.items():
        for field_name in REQUIRED_PAIR_KEYS:
            if field_name not in entry:
                raise ConfigValidationError(f"交易对 {pair_id} 缺少必需字段 '{field_name}'")

        chain_a, chain_b = int(entry["chainA"]), int(entry["chainB"])
        if chain_a == chain_b:
            raise ConfigValidationError(f"交易对 {pair_id} 的两个场所必须在不同的链上")

        base_symbols = {int(chain): str(symbol).upper() for chain, symbol in entry["base"].items()}
        quote_symbol = str(entry["quote"]).upper()
        for chain_id in (chain_a, chain_b):
            chain = registry.get(chain_id)
            chain.token_address(base_symbols.get(chain_id, ""))
            chain.token_address(quote_symbol)

        trading_unit = _to_decimal(f"交易对 {pair_id} tradingUnit", entry["tradingUnit"])
        if trading_unit <= 0:
            raise ConfigValidationError(f"交易对 {pair_id} 的 tradingUnit 必须为正数")

        balances = {
            int(chain): (
                _to_decimal(f"交易对 {pair_id} 初始基础余额", values.get("base", "0")),
                _to_decimal(f"交易对 {pair_id} 初始报价余额", values.get("quote", "0")),
            )
            for chain, values in entry.get("initialBalances", {}).items()
        }

        pairs[pair_id] = PairConfig(
            pair_id=pair_id,
            label=str(entry.get("label", pair_id.upper().replace("_", "/"))),
            chain_a=chain_a,
            chain_b=chain_b,
            base_symbols=base_symbols,
            quote_symbol=quote_symbol,
            trading_unit=trading_unit,
            fee_rate=_to_decimal(f"交易对 {pair_id} feeRate", entry.get("feeRate", DEFAULT_FEE_RATE)),
            initial_balances=balances,
        )
    return pairs


def _load_json_config(path: Path) -> Dict[str, Any]:
    """
    加载 JSON 配置文件

    异常:
        ConfigValidationError: 文件不存在或 JSON 格式无效
    """
    if not path.exists():
        raise ConfigValidationError(f"配置文件不存在: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"{path} 中的 JSON 格式无效: {e}") from e

    if not isinstance(config, dict):
        raise ConfigValidationError("配置必须是一个 JSON 对象")

    return config


@dataclass(frozen=True)
class RuntimeConfig:
    """从环境变量读取的运行时设置"""

    execution_mode: str = "auto"  # "auto"、"real" 或 "simulated"
    swap_deadline_seconds: int = 1200
    confirmation_timeout: float = 180.0
    scan_interval: float = 5.0
    log_level: str = "INFO"
    log_file: Optional[str] = None
    trade_history_file: Optional[str] = None


class ConfigLoader:
    """
    DualArb 配置管理器

    从 JSON 文件加载链表和交易对表，并与环境变量中的敏感信息结合。
    私钥只在这里读取，之后以签名能力（而不是原始字符串）传递。

    使用示例:
        >>> loader = ConfigLoader()
        >>> registry = loader.registry
        >>> print(registry.get(56).name)  # BSC
    """

    def __init__(
        self,
        chains_path: Optional[str] = None,
        pairs_path: Optional[str] = None,
        env_path: Optional[str] = None,
    ) -> None:
        self._project_root = self._find_project_root()

        env_file = Path(env_path) if env_path else self._project_root / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        config_dir = self._project_root / "config"
        self._chains_path = Path(chains_path or os.getenv("CHAINS_CONFIG") or config_dir / "chains.json")
        self._pairs_path = Path(pairs_path or os.getenv("PAIRS_CONFIG") or config_dir / "pairs.json")

        self._rpc_timeout = int(os.getenv("RPC_TIMEOUT", "10"))
        self._max_retries = int(os.getenv("MAX_RETRIES", "1"))

        self._registry: Optional[ChainRegistry] = None
        self._pairs: Optional[Dict[str, PairConfig]] = None

    def _find_project_root(self) -> Path:
        """向上查找包含 config 文件夹或 .git 的目录"""
        current = Path(__file__).resolve().parent

        for _ in range(5):
            if (current / "config").is_dir() or (current / ".git").exists():
                return current
            current = current.parent

        return Path(__file__).resolve().parent.parent

    def _get_rpc_overrides(self, raw: Mapping[str, Any]) -> Dict[str, List[str]]:
        """读取 <NAME>_RPC_OVERRIDE 环境变量"""
        overrides: Dict[str, List[str]] = {}
        for entry in raw.values():
            name = str(entry.get("name", "")).upper()
            override = os.getenv(f"{name}_RPC_OVERRIDE")
            if override:
                overrides[name] = [url.strip() for url in override.split(",") if url.strip()]
        return overrides

    @property
    def registry(self) -> ChainRegistry:
        if self._registry is None:
            raw = _load_json_config(self._chains_path)
            self._registry = ChainRegistry.from_dict(
                raw,
                rpc_timeout=self._rpc_timeout,
                max_retries=self._max_retries,
                rpc_overrides=self._get_rpc_overrides(raw),
            )
        return self._registry

    @property
    def pairs(self) -> Dict[str, PairConfig]:
        if self._pairs is None:
            self._pairs = parse_pairs(_load_json_config(self._pairs_path), self.registry)
        return self._pairs

    def private_key_for(self, chain_id: int) -> Optional[str]:
        """
        查找链的私钥

        优先 PRIVATE_KEY_<chainId>，其次按注册表中的位置回退到
        PRIVATE_KEY_A / PRIVATE_KEY_B。
        """
        key = os.getenv(f"PRIVATE_KEY_{chain_id}")
        if key:
            return key

        chain_ids = self.registry.chain_ids
        if chain_id in chain_ids[:2]:
            return os.getenv(f"PRIVATE_KEY_{'AB'[chain_ids.index(chain_id)]}") or None
        return None

    @property
    def runtime(self) -> RuntimeConfig:
        mode = os.getenv("EXECUTION_MODE", "auto").lower()
        if mode not in ("auto", "real", "simulated"):
            raise ConfigValidationError(f"EXECUTION_MODE 无效: {mode}")
        return RuntimeConfig(
            execution_mode=mode,
            swap_deadline_seconds=int(os.getenv("SWAP_DEADLINE_SECONDS", "1200")),
            confirmation_timeout=float(os.getenv("CONFIRMATION_TIMEOUT", "180")),
            scan_interval=float(os.getenv("SCAN_INTERVAL", "5")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
            trade_history_file=os.getenv("TRADE_HISTORY_FILE") or None,
        )
