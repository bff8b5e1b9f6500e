"""
DualArb: 工具模块
"""

from .abi_loader import ABILoadError, get_abi_path, get_erc20_abi, get_router_abi, load_abi

__all__ = ["ABILoadError", "get_abi_path", "get_erc20_abi", "get_router_abi", "load_abi"]
