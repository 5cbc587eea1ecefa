from typing import List, Optional, Sequence

import psycopg2
from loguru import logger as default_logger

from athena_pg_migrator.errors import LoadError
from athena_pg_migrator.services.statement_builder import StatementBuilder


class BatchLoader:
    """按页批量写入PostgreSQL（一页一条多行INSERT）"""
    
    def __init__(self, pg_client_manager, statement_builder: StatementBuilder, logger=None):
        self.pg_client_manager = pg_client_manager
        self.statement_builder = statement_builder
        self.logger = logger or default_logger
    
    def load_batch(self, target_table: str, columns: Sequence[str], rows: List[List[Optional[str]]]) -> int:
        """
        写入一个批次
        :return: 写入行数；空批次直接返回0
        """
        if not rows:
            self.logger.debug(f"表{target_table}批次为空，跳过写入")
            return 0

        self.logger.info(f"开始写入表{target_table}，行数：{len(rows)}")
        try:
            batch = self.statement_builder.build_insert(target_table, columns, rows)
        except ValueError as e:
            raise LoadError(target_table, len(rows), e) from e

        try:
            with self.pg_client_manager.connection() as conn:
                # 每个批次单独提交，失败时回滚
                with conn:
                    with conn.cursor() as cursor:
                        cursor.execute(batch.sql, batch.parameters)
                        rows_affected = cursor.rowcount
        except psycopg2.Error as e:
            self.logger.error(f"写入表{target_table}失败，尝试写入{len(rows)}行：{str(e)}")
            raise LoadError(target_table, len(rows), e) from e

        self.logger.info(f"表{target_table}写入成功：{rows_affected}行")
        return rows_affected
