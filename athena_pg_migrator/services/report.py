import json
import os
from datetime import datetime
from typing import List, Dict

from athena_pg_migrator.models import TableState

REPORT_PREFIX = "athena_pg_migration_report"


class ReportService:
    """报告服务"""

    def summarize(self, migration_results: List[Dict]) -> Dict:
        """按状态统计迁移结果"""
        def names(status: TableState) -> List[str]:
            return [r["table"] for r in migration_results if r["status"] == status.value]

        loaded_tables = names(TableState.LOADED)
        failed_tables = names(TableState.FAILED)
        not_started_tables = [
            r["table"] for r in migration_results
            if r["status"] not in (TableState.LOADED.value, TableState.FAILED.value)
        ]
        return {
            "total_tables": len(migration_results),
            "loaded_tables": len(loaded_tables),
            "failed_tables": failed_tables,
            "not_started_tables": not_started_tables,
            "total_rows": sum(r.get("total_rows", 0) for r in migration_results),
            "loaded_rows": sum(r.get("loaded_rows", 0) for r in migration_results),
            "failed_batches": sum(r.get("failed_batches", 0) for r in migration_results),
        }

    def generate_migration_report(self, config: Dict, migration_results: List[Dict], logger) -> str:
        """
        生成迁移报告
        :return: 报告文件路径
        """
        report_time = datetime.now().strftime("%Y%m%d_%H%M%S")
        os.makedirs(config["report_path"], exist_ok=True)
        report_file = os.path.join(config["report_path"], f"{REPORT_PREFIX}_{report_time}.json")
        summary = self.summarize(migration_results)

        report = {
            "migration_info": {
                "generated_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
                "catalog": config.get("catalog"),
                "database": config.get("database"),
                "failure_policy": config.get("failure_policy"),
                "postgres_config": {
                    "host": config.get("pg_host"),
                    "port": config.get("pg_port"),
                    "database": config.get("pg_database"),
                    "schema": config.get("pg_schema")
                }
            },
            "results": migration_results,
            "summary": summary
        }

        # 保存报告
        with open(report_file, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)

        logger.info(f"迁移报告已生成：{report_file}")
        self.log_migration_summary(migration_results, logger, summary)
        return report_file

    def log_migration_summary(self, migration_results: List[Dict], logger, summary: Dict = None):
        """
        记录迁移摘要（逐表行数与失败信息）
        """
        summary = summary or self.summarize(migration_results)

        logger.info("=" * 50)
        logger.info("迁移汇总：")
        for result in migration_results:
            logger.info(
                f"  {result['table']} -> {result.get('target', '')}：{result['status']}，"
                f"读取{result.get('total_rows', 0)}行，写入{result.get('loaded_rows', 0)}行，"
                f"失败批次{result.get('failed_batches', 0)}"
            )
        logger.info(f"总表数：{summary['total_tables']}")
        logger.info(f"成功：{summary['loaded_tables']}")
        logger.info(f"失败：{len(summary['failed_tables'])}")
        logger.info(f"未执行：{len(summary['not_started_tables'])}")
        logger.info(f"总行数：读取{summary['total_rows']}，写入{summary['loaded_rows']}")
        logger.info("=" * 50)

        if summary["failed_tables"]:
            logger.error(f"迁移失败的表：{', '.join(summary['failed_tables'])}，请查看日志和报告获取详细信息")
        if summary["not_started_tables"]:
            logger.error(f"未迁移的表：{', '.join(summary['not_started_tables'])}")
        if not summary["failed_tables"] and not summary["not_started_tables"]:
            logger.info("所有表迁移成功完成！")
