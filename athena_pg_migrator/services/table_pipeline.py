import time
from datetime import datetime
from typing import Dict

from loguru import logger as default_logger

from athena_pg_migrator.errors import (
    LoadError,
    PagingError,
    PollCancelledError,
    PollTimeoutError,
    QueryExecutionError,
    SubmissionError,
)
from athena_pg_migrator.models import FailurePolicy, TableDefinition, TableState


class TablePipeline:
    """单表迁移流程：提交查询 -> 等待完成 -> 逐页读取 -> 批量写入"""
    
    def __init__(self,
            query_executor,
            result_pager,
            batch_loader,
            statement_builder,
            database_context: Dict,
            output_location: str,
            failure_policy: FailurePolicy = FailurePolicy.ABORT_ON_FAILURE,
            logger=None
    ):
        self.query_executor = query_executor
        self.result_pager = result_pager
        self.batch_loader = batch_loader
        self.statement_builder = statement_builder
        self.database_context = database_context
        self.output_location = output_location
        self.failure_policy = failure_policy
        self.logger = logger or default_logger
    
    def run(self, table: TableDefinition) -> Dict:
        """迁移单个表，失败信息记录在返回结果中而不是向上抛出"""
        migration_result = {
            "table": table.source_name,
            "target": table.target_name,
            "start_time": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "end_time": "",
            "status": TableState.EXTRACTING.value,
            "execution_id": "",
            "pages": 0,
            "batches": 0,
            "failed_batches": 0,
            "total_rows": 0,
            "loaded_rows": 0,
            "error": ""
        }
        errors = []
        start_time = time.time()
        self.logger.info(f"{'-' * 20} 开始迁移表：{table.source_name} -> {table.target_name} {'-' * 20}")

        try:
            # 1. 提交抽取查询
            query = self.statement_builder.build_select(table)
            execution_id = self.query_executor.submit(query, self.database_context, self.output_location)
            migration_result["execution_id"] = execution_id

            # 2. 等待查询完成
            self.query_executor.await_completion(execution_id)

            # 3. 按顺序逐页写入
            for page in self.result_pager.pages(execution_id):
                migration_result["pages"] += 1
                migration_result["total_rows"] += len(page.rows)
                self.logger.info(
                    f"表{table.source_name}第{migration_result['pages']}页：{len(page.rows)}行"
                )
                if not page.rows:
                    continue

                migration_result["batches"] += 1
                try:
                    migration_result["loaded_rows"] += self.batch_loader.load_batch(
                        table.target_name, table.columns, page.rows
                    )
                except LoadError as e:
                    migration_result["failed_batches"] += 1
                    errors.append(str(e))
                    if self.failure_policy == FailurePolicy.ABORT_ON_FAILURE:
                        self.logger.error(f"表{table.source_name}批次写入失败，按策略终止该表：{str(e)}")
                        break
                    self.logger.warning(f"表{table.source_name}批次写入失败，继续处理下一页：{str(e)}")

        except (SubmissionError, QueryExecutionError, PagingError,
                PollTimeoutError, PollCancelledError) as e:
            errors.append(str(e))
            self.logger.error(f"迁移表{table.source_name}失败：{str(e)}")

        migration_result["status"] = TableState.FAILED.value if errors else TableState.LOADED.value
        migration_result["error"] = "\n".join(errors)
        migration_result["end_time"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.logger.info(
            f"{'-' * 20} 表{table.source_name}迁移结束：{migration_result['status']}，"
            f"读取{migration_result['total_rows']}行，写入{migration_result['loaded_rows']}行，"
            f"耗时{round(time.time() - start_time, 2)}秒 {'-' * 20}"
        )
        return migration_result
