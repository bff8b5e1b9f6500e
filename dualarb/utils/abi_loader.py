"""
DualArb ABI 加载器

从包内 abis 目录加载和缓存合约 ABI。
使用 orjson 进行快速 JSON 解析。
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import orjson

ABIS_DIR = Path(__file__).resolve().parent.parent / "abis"


class ABILoadError(Exception):
    """ABI 加载失败时抛出的异常"""
    pass


# 已加载 ABI 的缓存（模块级别）
_abi_cache: Dict[str, List[Dict[str, Any]]] = {}


def get_abi_path(file_name: str) -> Path:
    """获取 ABI 文件的完整路径（自动补全 .json 扩展名）"""
    if not file_name.endswith(".json"):
        file_name = f"{file_name}.json"
    return ABIS_DIR / file_name


def load_abi(file_name: str, use_cache: bool = True) -> List[Dict[str, Any]]:
    """
    从 abis 目录加载合约 ABI

    参数:
        file_name: ABI 文件名（带或不带 .json 扩展名）
        use_cache: 是否使用缓存的 ABI

    返回:
        包含函数/事件定义的 ABI 列表

    异常:
        ABILoadError: 文件不存在或 JSON 无效

    示例:
        >>> abi = load_abi("uniswap_v2_router")
    """
    abi_path = get_abi_path(file_name)
    cache_key = abi_path.name

    if use_cache and cache_key in _abi_cache:
        return _abi_cache[cache_key]

    if not abi_path.exists():
        raise ABILoadError(f"ABI 文件不存在: {abi_path}")

    try:
        content = orjson.loads(abi_path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ABILoadError(f"{abi_path} 中的 JSON 格式无效: {e}") from e

    # 某些来源将 ABI 包装在 {"abi": [...]} 中
    if isinstance(content, dict) and "abi" in content:
        content = content["abi"]

    if not isinstance(content, list):
        raise ABILoadError(
            f"{abi_path.name} 中的 ABI 格式无效。期望列表，得到 {type(content).__name__}"
        )

    if use_cache:
        _abi_cache[cache_key] = content

    return content


def clear_abi_cache() -> None:
    """清除 ABI 缓存以强制重新加载"""
    _abi_cache.clear()
    get_router_abi.cache_clear()
    get_erc20_abi.cache_clear()


@lru_cache(maxsize=1)
def get_router_abi() -> List[Dict[str, Any]]:
    """Uniswap V2 兼容路由器 ABI（getAmountsOut / swapExactTokensForTokens）"""
    return load_abi("uniswap_v2_router")


@lru_cache(maxsize=1)
def get_erc20_abi() -> List[Dict[str, Any]]:
    """最小 ERC20 ABI（allowance / approve / balanceOf / decimals）"""
    return load_abi("erc20")
