"""
交易日志模块 (Trade Journal)

功能：
- 每次执行尝试（无论成功或失败）都作为 ExecutionRecord 追加到审计存储
- InMemoryAuditSink: 内存存储，用于 CLI 会话和测试
- TradeJournal: 线程安全的 CSV 追加文件，每个 leg 一行

使用方法：
    journal = TradeJournal(Path("logs/trade_history.csv"))
    ledger = Ledger.from_config(pairs, registry, journal)
"""

import csv
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .ledger import ExecutionRecord

logger = logging.getLogger(__name__)


# ============================================
# 配置
# ============================================

# 默认日志目录
LOGS_DIR = Path(__file__).resolve().parent.parent / "logs"

# 默认 CSV 文件名
TRADE_HISTORY_FILE = "trade_history.csv"

# CSV 表头
CSV_HEADERS = [
    "Timestamp",
    "Execution_Id",
    "Pair",
    "Execution_Type",
    "Leg",
    "Chain_Id",
    "Side",
    "Status",
    "Tx_Hash",
    "Gas_Used",
    "Amount_Out",
    "Error_Kind",
    "Estimated_Profit",
    "Total_Profit",
]


def record_rows(record: ExecutionRecord) -> List[List[str]]:
    """把一条执行记录展开为两行 CSV（A 腿和 B 腿）"""
    timestamp = datetime.fromtimestamp(record.timestamp, timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    opportunity = record.opportunity
    rows = []
    for leg, result in (("A", record.result_a), ("B", record.result_b)):
        rows.append([
            timestamp,
            record.id,
            opportunity.pair_id,
            record.execution_type.value,
            leg,
            str(result.chain_id),
            "buy" if result.chain_id == opportunity.buy_chain else "sell",
            result.status.value,
            result.tx_hash,
            str(result.gas_used) if result.gas_used is not None else "",
            str(result.amount_out) if result.amount_out is not None else "",
            result.error_kind.value if result.error_kind else "",
            str(opportunity.estimated_profit),
            str(record.total_profit),
        ])
    return rows


# ============================================
# 审计存储
# ============================================

class InMemoryAuditSink:
    """只追加的内存审计存储"""

    def __init__(self) -> None:
        self._records: List[ExecutionRecord] = []
        self._lock = threading.Lock()

    def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[ExecutionRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


class TradeJournal:
    """
    CSV 交易日志

    将所有执行尝试追加到 CSV 文件，用于后续分析和审计。
    文件只追加，从不重写。
    """

    def __init__(self, file_path: Optional[Path] = None):
        """
        初始化交易日志

        参数：
            file_path: CSV 文件路径（默认为项目根目录下的 logs/trade_history.csv）
        """
        self.file_path = Path(file_path) if file_path else LOGS_DIR / TRADE_HISTORY_FILE
        self._lock = threading.Lock()

        self._ensure_directory()
        self._ensure_file()

    def _ensure_directory(self) -> None:
        """确保日志目录存在"""
        if not self.file_path.parent.exists():
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"创建日志目录: {self.file_path.parent}")

    def _ensure_file(self) -> None:
        """确保 CSV 文件存在并有正确的表头"""
        if not self.file_path.exists() or self.file_path.stat().st_size == 0:
            with open(self.file_path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(CSV_HEADERS)
            logger.info(f"创建交易日志: {self.file_path}")

    def append(self, record: ExecutionRecord) -> None:
        """线程安全地追加一条执行记录"""
        with self._lock:
            with open(self.file_path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerows(record_rows(record))

    def get_stats(self) -> Dict[str, object]:
        """
        获取交易统计信息

        返回：
            统计字典（按 leg 计数，利润按执行计）
        """
        stats: Dict[str, object] = {
            "executions": 0,
            "legs_succeeded": 0,
            "legs_failed": 0,
            "total_profit": 0.0,
            "total_gas_used": 0,
        }
        seen = set()

        with self._lock:
            with open(self.file_path, "r", newline="", encoding="utf-8") as f:
                for row in csv.DictReader(f):
                    if row["Status"] == "Success":
                        stats["legs_succeeded"] += 1
                    else:
                        stats["legs_failed"] += 1

                    if row["Gas_Used"]:
                        stats["total_gas_used"] += int(row["Gas_Used"])

                    if row["Execution_Id"] not in seen:
                        seen.add(row["Execution_Id"])
                        stats["executions"] += 1
                        stats["total_profit"] += float(row["Total_Profit"] or 0)

        return stats
