from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger as default_logger

from athena_pg_migrator.errors import QueryExecutionError, SubmissionError
from athena_pg_migrator.models import ATHENA_STATE_MAP, QueryExecution, QueryState
from athena_pg_migrator.utils.polling import Poller

DEFAULT_POLL_INTERVAL = 5


class QueryExecutor:
    """Athena查询提交与状态轮询"""
    
    def __init__(self, client, poller: Optional[Poller] = None, result_reuse_max_age: int = 0, logger=None):
        self.client = client
        self.poller = poller or Poller(interval=DEFAULT_POLL_INTERVAL)
        self.result_reuse_max_age = result_reuse_max_age
        self.logger = logger or default_logger
    
    def submit(self, query: str, database_context: Dict, output_location: str) -> str:
        """
        提交查询
        :param database_context: {"Database": ..., "Catalog": ...}
        :param output_location: 查询结果输出位置（S3路径）
        :return: 查询执行ID
        """
        request = {
            "QueryString": query,
            "QueryExecutionContext": database_context,
            "ResultConfiguration": {"OutputLocation": output_location},
        }
        if self.result_reuse_max_age > 0:
            request["ResultReuseConfiguration"] = {
                "ResultReuseByAgeConfiguration": {
                    "Enabled": True,
                    "MaxAgeInMinutes": self.result_reuse_max_age
                }
            }
        try:
            response = self.client.start_query_execution(**request)
        except (ClientError, BotoCoreError) as e:
            raise SubmissionError(f"查询提交失败：{str(e)}") from e

        execution_id = response["QueryExecutionId"]
        self.logger.info(f"查询已提交，执行ID：{execution_id}，语句：{query}")
        return execution_id
    
    def get_status(self, execution_id: str) -> QueryExecution:
        """获取查询执行状态"""
        try:
            response = self.client.get_query_execution(QueryExecutionId=execution_id)
        except (ClientError, BotoCoreError) as e:
            raise QueryExecutionError(execution_id, f"获取执行状态失败：{str(e)}") from e

        status = response["QueryExecution"]["Status"]
        athena_state = status["State"]
        if athena_state not in ATHENA_STATE_MAP:
            raise QueryExecutionError(execution_id, f"未知的查询状态：{athena_state}")
        return QueryExecution(
            execution_id=execution_id,
            state=ATHENA_STATE_MAP[athena_state],
            failure_reason=status.get("StateChangeReason")
        )
    
    def await_completion(self, execution_id: str) -> QueryExecution:
        """
        轮询直到查询结束
        失败时抛出QueryExecutionError，不自动重试
        """
        def on_tick(attempt: int, execution: QueryExecution):
            self.logger.debug(f"查询{execution_id}第{attempt}次轮询，状态：{execution.state.value}")

        execution = self.poller.poll(
            fetch=lambda: self.get_status(execution_id),
            is_done=lambda e: e.state.is_terminal,
            description=f"查询{execution_id}完成",
            on_tick=on_tick
        )
        if execution.state == QueryState.FAILED:
            self.logger.error(f"查询{execution_id}执行失败：{execution.failure_reason}")
            raise QueryExecutionError(execution_id, execution.failure_reason)

        self.logger.info(f"查询{execution_id}执行成功，开始获取结果")
        return execution
