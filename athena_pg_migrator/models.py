from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from psycopg2.sql import Composable


class QueryState(str, Enum):
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryState.SUCCEEDED, QueryState.FAILED)


# Athena查询状态 -> 内部状态
ATHENA_STATE_MAP = {
    "QUEUED": QueryState.SUBMITTED,
    "RUNNING": QueryState.RUNNING,
    "SUCCEEDED": QueryState.SUCCEEDED,
    "FAILED": QueryState.FAILED,
    "CANCELLED": QueryState.FAILED,
}


class TableState(str, Enum):
    PENDING = "pending"
    METADATA_RESOLVED = "metadata_resolved"
    EXTRACTING = "extracting"
    LOADED = "loaded"
    FAILED = "failed"


class FailurePolicy(str, Enum):
    """批次/表失败后的处理策略"""
    ABORT_ON_FAILURE = "abort"
    SKIP_AND_CONTINUE = "skip"


@dataclass(frozen=True)
class TableDefinition:
    """
    单个迁移表定义
    :param source_name: Athena（Glue）表名
    :param target_name: PostgreSQL表名
    :param columns: 列名，同时决定抽取查询的投影顺序与INSERT的列顺序
    :param depends_on: 被当前表外键引用的源表名
    """
    source_name: str
    target_name: str
    columns: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()


@dataclass
class QueryExecution:
    execution_id: str
    state: QueryState
    failure_reason: Optional[str] = None


@dataclass
class ResultPage:
    rows: List[List[Optional[str]]]
    continuation_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None


@dataclass
class InsertBatch:
    target_table: str
    columns: Tuple[str, ...]
    rows: List[List[Optional[str]]]
    parameter_values: List[Optional[str]] = field(default_factory=list)
    sql: Optional[Composable] = None

    @property
    def parameters(self) -> dict:
        """占位符编号从1开始：p1..pN"""
        return {f"p{idx + 1}": value for idx, value in enumerate(self.parameter_values)}
