from typing import Optional


class MigrationError(Exception):
    """迁移异常基类"""


class ConfigurationError(MigrationError):
    """表/列配置错误，整体迁移在抽取前终止"""


class CyclicDependencyError(ConfigurationError):
    """表依赖关系存在环，无法计算加载顺序"""

    def __init__(self, tables):
        self.tables = list(tables)
        super().__init__(f"表依赖关系存在环：{', '.join(self.tables)}")


class SubmissionError(MigrationError):
    """查询提交被Athena拒绝（语法错误、权限不足等）"""


class QueryExecutionError(MigrationError):
    """Athena报告查询执行失败"""

    def __init__(self, execution_id: str, reason: Optional[str]):
        self.execution_id = execution_id
        self.reason = reason
        super().__init__(f"查询{execution_id}执行失败：{reason}")


class PagingError(MigrationError):
    """分页获取查询结果失败"""


class LoadError(MigrationError):
    """批量写入PostgreSQL失败"""

    def __init__(self, table: str, attempted_rows: int, cause: Exception):
        self.table = table
        self.attempted_rows = attempted_rows
        self.cause = cause
        super().__init__(f"写入表{table}失败（尝试写入{attempted_rows}行）：{cause}")


class PollTimeoutError(MigrationError, TimeoutError):
    """轮询超过最大等待时间"""


class PollCancelledError(MigrationError):
    """轮询被取消"""


class LifecycleError(MigrationError):
    """基础设施服务启停失败"""
