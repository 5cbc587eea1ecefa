import argparse
import os
import yaml
from typing import Dict, List, Optional

from athena_pg_migrator.errors import ConfigurationError
from athena_pg_migrator.models import FailurePolicy, TableDefinition

DEFAULT_CATALOG = "AwsDataCatalog"
DEFAULT_PG_HOST = "127.0.0.1"
DEFAULT_PG_PORT = 5432
DEFAULT_PG_USER = "postgres"
DEFAULT_PG_PASSWORD = ""
DEFAULT_PG_SCHEMA = "public"
DEFAULT_POOL_MAX_CONNECTIONS = 20
DEFAULT_POOL_IDLE_TIMEOUT = 30
DEFAULT_POOL_CONNECT_TIMEOUT = 20
DEFAULT_POLL_INTERVAL = 5
DEFAULT_POLL_TIMEOUT = 3600
DEFAULT_POLL_BACKOFF = 1.0
DEFAULT_MAX_POLL_INTERVAL = 60
DEFAULT_PAGE_SIZE = 1000
DEFAULT_METADATA_WORKERS = 8
DEFAULT_FAILURE_POLICY = FailurePolicy.ABORT_ON_FAILURE.value
DEFAULT_LIFECYCLE_POLL_INTERVAL = 30
DEFAULT_LIFECYCLE_MAX_ATTEMPTS = 60
DEFAULT_LOG_PATH = "./logs"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_REPORT_PATH = "./reports"

MODES = ["migrate", "start-services", "stop-services"]

# 配置项 -> 默认值
DEFAULTS = {
    "region": None,
    "catalog": DEFAULT_CATALOG,
    "database": None,
    "output_location": None,
    "result_reuse_max_age": 0,
    "pg_host": DEFAULT_PG_HOST,
    "pg_port": DEFAULT_PG_PORT,
    "pg_user": DEFAULT_PG_USER,
    "pg_password": DEFAULT_PG_PASSWORD,
    "pg_database": None,
    "pg_schema": DEFAULT_PG_SCHEMA,
    "pool_max_connections": DEFAULT_POOL_MAX_CONNECTIONS,
    "pool_idle_timeout": DEFAULT_POOL_IDLE_TIMEOUT,
    "pool_connect_timeout": DEFAULT_POOL_CONNECT_TIMEOUT,
    "poll_interval": DEFAULT_POLL_INTERVAL,
    "poll_timeout": DEFAULT_POLL_TIMEOUT,
    "poll_backoff": DEFAULT_POLL_BACKOFF,
    "max_poll_interval": DEFAULT_MAX_POLL_INTERVAL,
    "page_size": DEFAULT_PAGE_SIZE,
    "metadata_workers": DEFAULT_METADATA_WORKERS,
    "failure_policy": DEFAULT_FAILURE_POLICY,
    "source_prefix": "",
    "tables": [],
    "log_path": DEFAULT_LOG_PATH,
    "log_level": DEFAULT_LOG_LEVEL,
    "report_path": DEFAULT_REPORT_PATH,
    # 服务启停
    "cluster": None,
    "services": [],
    "site_rule_arn": None,
    "maintenance_rule_arn": None,
    "db_instance_identifier": None,
    "nat_subnet_id": None,
    "nat_allocation_id": None,
    "nat_gateway_name": None,
    "route_table_id": None,
    "lifecycle_poll_interval": DEFAULT_LIFECYCLE_POLL_INTERVAL,
    "lifecycle_max_attempts": DEFAULT_LIFECYCLE_MAX_ATTEMPTS,
}

# 配置项 -> (环境变量, 类型转换)
ENVIRONMENT = {
    "region": ("AWS_REGION", str),
    "catalog": ("ATHENA_CATALOG", str),
    "database": ("ATHENA_DATABASE", str),
    "output_location": ("ATHENA_OUTPUT_LOCATION", str),
    "pg_host": ("PG_HOST", str),
    "pg_port": ("PG_PORT", int),
    "pg_user": ("PG_USER", str),
    "pg_password": ("PG_PASSWORD", str),
    "pg_database": ("PG_DB", str),
    "pg_schema": ("PG_SCHEMA", str),
    "tables": ("MIGRATION_TABLES", lambda v: split_list(v)),
    "failure_policy": ("MIGRATION_FAILURE_POLICY", str),
    "log_level": ("LOG_LEVEL", str),
    "log_path": ("LOG_PATH", str),
    "report_path": ("REPORT_PATH", str),
    "cluster": ("FARGATE_CLUSTER_NAME", str),
    "services": ("FARGATE_SERVICES", lambda v: split_list(v)),
    "site_rule_arn": ("SITE_ALB_ARN", str),
    "maintenance_rule_arn": ("UNDER_MAINTENANCE_ALB_ARN", str),
    "db_instance_identifier": ("RDS_DB_IDENTIFIER", str),
    "nat_subnet_id": ("NAT_SUBNET_ID", str),
    "nat_allocation_id": ("NAT_ALLOCATION_ID", str),
    "nat_gateway_name": ("NEW_NAT_GATEWAY_NAME", str),
    "route_table_id": ("ROUTE_TABLE_ID", str),
}


def split_list(value: str) -> List[str]:
    """逗号分隔字符串 -> 列表"""
    return [item.strip() for item in value.split(",") if item.strip()]


# 数值配置项 -> (最小值, 最大值, 是否允许为空)
NUMERIC_LIMITS = {
    "page_size": (1, DEFAULT_PAGE_SIZE, False),
    "poll_interval": (0, None, False),
    "poll_timeout": (0, None, True),
    "poll_backoff": (1, None, False),
    "max_poll_interval": (0, None, True),
    "pool_max_connections": (1, None, False),
    "pool_idle_timeout": (0, None, False),
    "metadata_workers": (1, None, False),
    "lifecycle_poll_interval": (0, None, False),
    "lifecycle_max_attempts": (1, None, False),
}


def validate_settings(config: Dict):
    """校验数值配置的取值范围"""
    for key, (minimum, maximum, nullable) in NUMERIC_LIMITS.items():
        if key not in config:
            continue
        value = config[key]
        if value is None and nullable:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"配置项{key}必须是数字：{value!r}")
        if value < minimum or (maximum is not None and value > maximum):
            limit = f"{minimum}到{maximum}之间" if maximum is not None else f"不小于{minimum}"
            raise ConfigurationError(f"配置项{key}取值非法：{value}，必须{limit}")


def parse_table_entries(entries, source_prefix: str = "") -> List[TableDefinition]:
    """
    解析表配置（列信息稍后从数据目录获取）
    :param entries: 表名字符串，或{source, target, depends_on}字典
    :param source_prefix: 目标表名默认去掉的源表名前缀
    """
    if not entries:
        raise ConfigurationError("未配置任何迁移表")
    if not isinstance(entries, list):
        raise ConfigurationError(f"tables配置必须是列表：{entries!r}")

    tables = []
    seen = set()
    for entry in entries:
        if isinstance(entry, str):
            source, target, depends_on = entry, None, []
        elif isinstance(entry, dict) and entry.get("source"):
            source = entry["source"]
            target = entry.get("target")
            depends_on = entry.get("depends_on") or []
            if isinstance(depends_on, str):
                depends_on = [depends_on]
        else:
            raise ConfigurationError(f"无法解析的表配置：{entry!r}")

        if not isinstance(source, str) or not source.strip():
            raise ConfigurationError(f"表名不能为空：{entry!r}")
        source = source.strip()
        if source in seen:
            raise ConfigurationError(f"表{source}重复配置")
        seen.add(source)

        if not target:
            target = source[len(source_prefix):] if source_prefix and source.startswith(source_prefix) else source
        tables.append(TableDefinition(
            source_name=source,
            target_name=target,
            depends_on=tuple(depends_on)
        ))
    return tables


class ConfigManager:
    """配置管理器"""

    def __init__(self):
        self.config = {}

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="将Athena（Glue数据目录）中的表全量迁移到PostgreSQL",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
                使用示例：
                1. 按配置文件迁移：
                   athena-pg-migrator --config migration.yaml
                2. 命令行指定表（按外键依赖顺序）：
                   athena-pg-migrator --database backup_db --output-location s3://bucket/athena/ --tables glue_accounts,glue_orders --source-prefix glue_ --pg-database app
                3. 批次失败后继续迁移后续数据：
                   athena-pg-migrator --config migration.yaml --failure-policy skip
                4. 启动/停止服务：
                   athena-pg-migrator --mode start-services --config services.yaml
                    """
                )
        # 配置文件
        parser.add_argument("--config", help="配置文件路径")
        parser.add_argument("--mode", choices=MODES, help="运行模式：migrate（迁移）/start-services/stop-services")
        # Athena配置
        parser.add_argument("--region", help="AWS区域")
        parser.add_argument("--catalog", help="数据目录名")
        parser.add_argument("--database", help="Athena数据库名")
        parser.add_argument("--output-location", help="Athena查询结果输出位置（S3路径）")
        parser.add_argument("--tables", type=split_list, help="迁移表列表（逗号分隔，按依赖顺序）")
        parser.add_argument("--source-prefix", help="目标表名需去掉的源表名前缀")
        # PostgreSQL配置
        parser.add_argument("--pg-host", help="PostgreSQL主机地址")
        parser.add_argument("--pg-port", type=int, help="PostgreSQL端口")
        parser.add_argument("--pg-user", help="PostgreSQL用户名")
        parser.add_argument("--pg-password", help="PostgreSQL密码")
        parser.add_argument("--pg-database", help="PostgreSQL数据库名")
        parser.add_argument("--pg-schema", help="PostgreSQL schema")
        parser.add_argument("--pool-max-connections", type=int, help="连接池最大连接数")
        # 迁移控制
        parser.add_argument("--poll-interval", type=float, help="查询状态轮询间隔（秒）")
        parser.add_argument("--poll-timeout", type=float, help="查询状态最大等待时间（秒）")
        parser.add_argument("--page-size", type=int, help="每页结果行数（1-1000）")
        parser.add_argument("--failure-policy", choices=[p.value for p in FailurePolicy],
                            help="失败策略：abort（终止）/skip（跳过并继续）")
        # 日志和报告
        parser.add_argument("--log-path", help="日志存储路径")
        parser.add_argument("--log-level", help="控制台日志级别")
        parser.add_argument("--report-path", help="迁移报告存储路径")
        return parser

    def parse_args(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """解析命令行参数"""
        return self.build_parser().parse_args(argv)

    def load_config(self, config_path: Optional[str] = None) -> Dict:
        """加载配置文件"""
        if not config_path:
            return {}
        if not os.path.exists(config_path):
            raise ConfigurationError(f"配置文件不存在：{config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"配置文件解析失败：{str(e)}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件格式错误：{config_path}")
        return data

    def load_environment(self) -> Dict:
        """加载环境变量（只返回已设置的项）"""
        env_config = {}
        for key, (env_name, cast) in ENVIRONMENT.items():
            value = os.getenv(env_name)
            if value is None or value == "":
                continue
            try:
                env_config[key] = cast(value)
            except ValueError as e:
                raise ConfigurationError(f"环境变量{env_name}取值非法：{value}") from e
        return env_config

    def get_final_config(self, args: argparse.Namespace) -> Dict:
        """获取最终配置（优先级：命令行参数 > 环境变量 > 配置文件 > 默认值）"""
        config_file = self.load_config(args.config)
        env_config = self.load_environment()
        arg_config = {key: value for key, value in vars(args).items() if value is not None}

        final_config = dict(DEFAULTS)
        for source in (config_file, env_config, arg_config):
            for key, value in source.items():
                if key in DEFAULTS or key == "mode":
                    final_config[key] = value
        final_config.setdefault("mode", "migrate")
        if final_config["mode"] not in MODES:
            raise ConfigurationError(f"未知的运行模式：{final_config['mode']}")

        if final_config["failure_policy"] not in [p.value for p in FailurePolicy]:
            raise ConfigurationError(f"未知的失败策略：{final_config['failure_policy']}")
        validate_settings(final_config)

        # 创建日志和报告目录
        os.makedirs(final_config["log_path"], exist_ok=True)
        os.makedirs(final_config["report_path"], exist_ok=True)

        self.config = final_config
        return final_config
