import sys
from loguru import logger

from athena_pg_migrator.config import ConfigManager
from athena_pg_migrator.errors import ConfigurationError, MigrationError
from athena_pg_migrator.orchestrator import MigrationOrchestrator


def run_lifecycle(config) -> bool:
    """执行服务启停"""
    from athena_pg_migrator.services.lifecycle import ServiceLifecycleController
    from athena_pg_migrator.utils.logging import setup_logger

    setup_logger(config["log_path"], config["log_level"])
    controller = ServiceLifecycleController(config)
    try:
        if config["mode"] == "start-services":
            controller.start_services()
        else:
            controller.stop_services()
    except MigrationError as e:
        logger.error(f"服务启停失败：{str(e)}")
        return False
    logger.info(f"{config['mode']}执行完成")
    return True


def main(argv=None):
    """主入口函数"""
    # 解析命令行参数
    config_manager = ConfigManager()
    args = config_manager.parse_args(argv)

    # 获取最终配置
    try:
        config = config_manager.get_final_config(args)
    except ConfigurationError as e:
        logger.error(f"配置错误：{str(e)}")
        sys.exit(2)

    if config["mode"] != "migrate":
        sys.exit(0 if run_lifecycle(config) else 1)

    # 创建迁移协调器
    orchestrator = MigrationOrchestrator()

    # 执行迁移
    migration_results, success = orchestrator.orchestrate_migration(config)

    # 退出状态
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
