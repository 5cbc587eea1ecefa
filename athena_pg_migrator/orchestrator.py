import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from loguru import logger

from athena_pg_migrator.errors import ConfigurationError
from athena_pg_migrator.models import FailurePolicy, TableDefinition, TableState


class MigrationOrchestrator:
    """迁移协调器"""

    def __init__(self, athena_client_manager=None, pg_client_manager=None, report_service=None, setup_logger=None):
        from athena_pg_migrator.clients.athena_client import AthenaClientManager
        from athena_pg_migrator.clients.pg_client import PGClientManager
        from athena_pg_migrator.services.report import ReportService
        from athena_pg_migrator.utils.logging import setup_logger as default_setup_logger

        self.athena_client_manager = athena_client_manager or AthenaClientManager()
        self.pg_client_manager = pg_client_manager or PGClientManager()
        self.report_service = report_service or ReportService()
        self.setup_logger = setup_logger or default_setup_logger
        self.cancel_event = threading.Event()
        self.table_states: Dict[str, TableState] = {}

    def cancel(self):
        """取消正在进行的轮询"""
        self.cancel_event.set()

    def _set_state(self, table: str, state: TableState):
        self.table_states[table] = state
        logger.debug(f"表{table}状态：{state.value}")

    def prepare_tables(self, config: Dict) -> List[TableDefinition]:
        """校验表配置并计算加载顺序（在任何抽取开始前失败）"""
        from athena_pg_migrator.config import parse_table_entries, validate_settings
        from athena_pg_migrator.services.dependency import order_tables
        from athena_pg_migrator.services.statement_builder import IDENTIFIER_PATTERN

        for key in ("database", "output_location", "pg_database"):
            if not config.get(key):
                raise ConfigurationError(f"缺少必要配置：{key}")
        validate_settings(config)
        if config.get("failure_policy") not in [p.value for p in FailurePolicy]:
            raise ConfigurationError(f"未知的失败策略：{config.get('failure_policy')}")

        tables = parse_table_entries(config.get("tables"), config.get("source_prefix") or "")
        for table in tables:
            for name in (table.source_name, table.target_name):
                if not IDENTIFIER_PATTERN.match(name):
                    raise ConfigurationError(f"非法表名：{name!r}")
        tables = order_tables(tables)
        for table in tables:
            self._set_state(table.source_name, TableState.PENDING)
        return tables

    def resolve_metadata(self, client, config: Dict, tables: List[TableDefinition]) -> List[TableDefinition]:
        """并发获取所有表的列信息，全部完成后返回（保持原顺序）"""
        workers = max(1, min(int(config.get("metadata_workers") or 1), len(tables)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(
                    self.athena_client_manager.get_table_columns,
                    client, config["catalog"], config["database"], table.source_name
                )
                for table in tables
            ]

        resolved = []
        errors = []
        for table, future in zip(tables, futures):
            try:
                columns = future.result()
            except ConfigurationError as e:
                errors.append(str(e))
                continue
            resolved.append(TableDefinition(
                source_name=table.source_name,
                target_name=table.target_name,
                columns=tuple(columns),
                depends_on=table.depends_on
            ))
            self._set_state(table.source_name, TableState.METADATA_RESOLVED)
            logger.info(f"表{table.source_name}列信息：{', '.join(columns)}")

        if errors:
            raise ConfigurationError("获取表元数据失败：" + "；".join(errors))
        return resolved

    def build_pipeline(self, client, config: Dict, tables: List[TableDefinition]):
        """组装单表迁移流程"""
        from athena_pg_migrator.services.batch_loader import BatchLoader
        from athena_pg_migrator.services.query_executor import QueryExecutor
        from athena_pg_migrator.services.result_pager import ResultPager
        from athena_pg_migrator.services.statement_builder import StatementBuilder
        from athena_pg_migrator.services.table_pipeline import TablePipeline
        from athena_pg_migrator.utils.polling import Poller

        poller = Poller(
            interval=config["poll_interval"],
            timeout=config.get("poll_timeout"),
            backoff=config.get("poll_backoff", 1.0),
            max_interval=config.get("max_poll_interval"),
            cancel_event=self.cancel_event
        )
        statement_builder = StatementBuilder.from_tables(tables, config.get("pg_schema"))
        database_context = {"Database": config["database"]}
        if config.get("catalog"):
            database_context["Catalog"] = config["catalog"]

        return TablePipeline(
            query_executor=QueryExecutor(client, poller, config.get("result_reuse_max_age", 0), logger),
            result_pager=ResultPager(client, config.get("page_size", 1000), logger),
            batch_loader=BatchLoader(self.pg_client_manager, statement_builder, logger),
            statement_builder=statement_builder,
            database_context=database_context,
            output_location=config["output_location"],
            failure_policy=FailurePolicy(config.get("failure_policy", FailurePolicy.ABORT_ON_FAILURE.value)),
            logger=logger
        )

    def validate_statements(self, statement_builder, tables: List[TableDefinition]):
        """抽取开始前校验所有表的源表名、目标表名和列名"""
        for table in tables:
            statement_builder.validate_table(table)

    def _not_started_result(self, table: TableDefinition, reason: str) -> Dict:
        return {
            "table": table.source_name,
            "target": table.target_name,
            "status": self.table_states[table.source_name].value,
            "total_rows": 0,
            "loaded_rows": 0,
            "failed_batches": 0,
            "error": reason
        }

    def run_tables(self, pipeline, tables: List[TableDefinition], migration_results: Optional[List[Dict]] = None) -> List[Dict]:
        """
        按顺序逐表迁移
        单表失败不会终止后续表；abort策略下跳过（直接或间接）依赖失败表的表
        :param migration_results: 可选，结果逐表追加到该列表
        """
        if migration_results is None:
            migration_results = []
        unsuccessful = set()
        for idx, table in enumerate(tables):
            blocked_by = [name for name in table.depends_on if name in unsuccessful]
            if blocked_by and pipeline.failure_policy == FailurePolicy.ABORT_ON_FAILURE:
                unsuccessful.add(table.source_name)
                logger.error(f"表{table.source_name}依赖的表{', '.join(blocked_by)}迁移失败，跳过该表")
                migration_results.append(
                    self._not_started_result(table, f"依赖的表{', '.join(blocked_by)}迁移失败，未执行")
                )
                continue

            logger.info(f"迁移进度：[{idx + 1}/{len(tables)}]：{table.source_name}")
            self._set_state(table.source_name, TableState.EXTRACTING)
            result = pipeline.run(table)
            self._set_state(table.source_name, TableState(result["status"]))
            migration_results.append(result)

            if result["status"] == TableState.FAILED.value:
                unsuccessful.add(table.source_name)
                logger.warning(f"表{table.source_name}迁移失败，继续处理下一个表")
        return migration_results

    def orchestrate_migration(self, config: Dict, athena_client=None):
        """
        协调迁移流程
        :param config: 配置字典
        :param athena_client: 可选，已创建的Athena客户端
        :return: (迁移结果列表, 是否全部成功)
        """
        # 初始化日志
        self.setup_logger(config["log_path"], config.get("log_level", "info"))
        logger.info("=" * 50)
        logger.info("开始Athena表迁移到PostgreSQL")
        logger.info(f"数据目录：{config.get('catalog')}，数据库：{config.get('database')}，"
                    f"失败策略：{config.get('failure_policy')}")
        logger.info("=" * 50)

        migration_results = []
        try:
            # 1. 校验配置并确定加载顺序
            tables = self.prepare_tables(config)
            logger.info(f"迁移顺序：{' -> '.join(t.source_name for t in tables)}")

            # 2. 创建Athena客户端并获取列信息
            client = athena_client or self.athena_client_manager.create_client(config.get("region"))
            tables = self.resolve_metadata(client, config, tables)

            # 3. 组装迁移流程并校验全部标识符
            pipeline = self.build_pipeline(client, config, tables)
            self.validate_statements(pipeline.statement_builder, tables)

            # 4. 创建PostgreSQL连接池
            if self.pg_client_manager.pool is None:
                self.pg_client_manager.create_pool(
                    config["pg_host"],
                    config["pg_port"],
                    config["pg_user"],
                    config["pg_password"],
                    config["pg_database"],
                    max_connections=config["pool_max_connections"],
                    idle_timeout=config["pool_idle_timeout"],
                    connect_timeout=config["pool_connect_timeout"]
                )
                logger.info("PostgreSQL连接池创建成功")

            # 5. 逐表迁移
            self.run_tables(pipeline, tables, migration_results)

            # 6. 生成迁移报告
            self.report_service.generate_migration_report(config, migration_results, logger)

            # 7. 最终状态检查
            if any(r["status"] != TableState.LOADED.value for r in migration_results):
                logger.error("迁移完成，但有表未成功迁移")
                return migration_results, False
            logger.info("所有表迁移成功完成！")
            return migration_results, True

        except ConfigurationError as e:
            logger.error(f"配置错误，迁移终止：{str(e)}")
            self._report_partial(config, migration_results)
            return migration_results, False
        except Exception as e:
            import traceback
            logger.error(f"迁移流程异常终止：{str(e)}\n{traceback.format_exc()}")
            self._report_partial(config, migration_results)
            return migration_results, False
        finally:
            # 关闭连接池
            self.pg_client_manager.close()

    def _report_partial(self, config: Dict, migration_results: List[Dict]):
        """异常终止时，已有的逐表结果仍写入报告"""
        if migration_results:
            self.report_service.generate_migration_report(config, migration_results, logger)
