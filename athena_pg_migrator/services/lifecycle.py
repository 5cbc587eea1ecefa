from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger as default_logger

from athena_pg_migrator.errors import LifecycleError

TRAFFIC_TARGETS = ("primary", "maintenance")
# 规则优先级：数值越小越先匹配
ACTIVE_PRIORITY = 1
INACTIVE_PRIORITY = 10


class ServiceLifecycleController:
    """
    应用服务启停（负载均衡规则、Fargate服务、RDS实例、NAT网关）

    与迁移流程相互独立；启动数据库和创建NAT网关时使用boto3 waiter等待到可用状态。
    """

    def __init__(self, config: Dict, ecs=None, elbv2=None, rds=None, ec2=None, logger=None):
        region = config.get("region")
        self.config = config
        self.ecs = ecs or boto3.client("ecs", region_name=region)
        self.elbv2 = elbv2 or boto3.client("elbv2", region_name=region)
        self.rds = rds or boto3.client("rds", region_name=region)
        self.ec2 = ec2 or boto3.client("ec2", region_name=region)
        self.waiter_config = {
            "Delay": config.get("lifecycle_poll_interval", 30),
            "MaxAttempts": config.get("lifecycle_max_attempts", 60)
        }
        self.logger = logger or default_logger

    def _require(self, *keys) -> List:
        missing = [key for key in keys if not self.config.get(key)]
        if missing:
            raise LifecycleError(f"缺少服务启停配置：{', '.join(missing)}")
        return [self.config[key] for key in keys]

    def set_traffic_target(self, target: str):
        """切换负载均衡流量：primary（应用服务）/maintenance（维护页）"""
        if target not in TRAFFIC_TARGETS:
            raise LifecycleError(f"未知的流量目标：{target}")
        site_rule, maintenance_rule = self._require("site_rule_arn", "maintenance_rule_arn")
        primary_first = target == "primary"
        try:
            self.elbv2.set_rule_priorities(RulePriorities=[
                {"RuleArn": site_rule, "Priority": ACTIVE_PRIORITY if primary_first else INACTIVE_PRIORITY},
                {"RuleArn": maintenance_rule, "Priority": INACTIVE_PRIORITY if primary_first else ACTIVE_PRIORITY},
            ])
        except (ClientError, BotoCoreError) as e:
            raise LifecycleError(f"调整负载均衡规则优先级失败：{str(e)}") from e
        self.logger.info(f"负载均衡流量已切换到：{target}")

    def set_compute_capacity(self, desired: int):
        """调整Fargate服务实例数（0或1）"""
        if desired not in (0, 1):
            raise LifecycleError(f"实例数只能为0或1：{desired}")
        (cluster,) = self._require("cluster")
        services = self.config.get("services") or []
        if not services:
            raise LifecycleError("缺少服务启停配置：services")
        # 停止时反向处理，先停前端再停后端
        for service in (services if desired else list(reversed(services))):
            try:
                self.ecs.update_service(cluster=cluster, service=service, desiredCount=desired)
            except (ClientError, BotoCoreError) as e:
                raise LifecycleError(f"更新服务{service}实例数失败：{str(e)}") from e
            self.logger.info(f"服务{service}实例数已设置为{desired}")

    def set_database_availability(self, available: bool):
        """启动（并等待可用）或停止RDS实例"""
        (identifier,) = self._require("db_instance_identifier")
        try:
            if not available:
                self.rds.stop_db_instance(DBInstanceIdentifier=identifier)
                self.logger.info(f"数据库实例{identifier}已停止")
                return
            self.rds.start_db_instance(DBInstanceIdentifier=identifier)
            self.logger.info(f"等待数据库实例{identifier}可用")
            self.rds.get_waiter("db_instance_available").wait(
                DBInstanceIdentifier=identifier,
                WaiterConfig=self.waiter_config
            )
        except (ClientError, BotoCoreError) as e:
            raise LifecycleError(f"{'启动' if available else '停止'}数据库实例{identifier}失败：{str(e)}") from e
        self.logger.info(f"数据库实例{identifier}已启动")

    def provision_egress_gateway(self) -> str:
        """创建NAT网关，等待可用后替换默认路由"""
        subnet_id, allocation_id, name, route_table_id = self._require(
            "nat_subnet_id", "nat_allocation_id", "nat_gateway_name", "route_table_id"
        )
        try:
            response = self.ec2.create_nat_gateway(
                SubnetId=subnet_id,
                AllocationId=allocation_id,
                TagSpecifications=[{
                    "ResourceType": "natgateway",
                    "Tags": [{"Key": "Name", "Value": name}]
                }]
            )
            nat_gateway_id = response["NatGateway"]["NatGatewayId"]
            if response["NatGateway"].get("State") != "available":
                self.logger.info(f"等待NAT网关{nat_gateway_id}可用")
                self.ec2.get_waiter("nat_gateway_available").wait(
                    NatGatewayIds=[nat_gateway_id],
                    WaiterConfig=self.waiter_config
                )
            self.ec2.replace_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock="0.0.0.0/0",
                NatGatewayId=nat_gateway_id
            )
        except (ClientError, BotoCoreError) as e:
            raise LifecycleError(f"创建NAT网关失败：{str(e)}") from e
        self.logger.info(f"NAT网关{nat_gateway_id}创建成功")
        return nat_gateway_id

    def teardown_egress_gateway(self) -> Optional[str]:
        """按Name标签查找可用的NAT网关并删除"""
        (name,) = self._require("nat_gateway_name")
        try:
            response = self.ec2.describe_nat_gateways(Filters=[{"Name": "state", "Values": ["available"]}])
            nat_gateway = next(
                (nat for nat in response.get("NatGateways", [])
                 if any(tag.get("Key") == "Name" and tag.get("Value") == name for tag in nat.get("Tags", []))),
                None
            )
            if nat_gateway is None:
                self.logger.info(f"未找到名为{name}的NAT网关")
                return None
            nat_gateway_id = nat_gateway["NatGatewayId"]
            self.ec2.delete_nat_gateway(NatGatewayId=nat_gateway_id)
        except (ClientError, BotoCoreError) as e:
            raise LifecycleError(f"删除NAT网关失败：{str(e)}") from e
        self.logger.info(f"NAT网关{nat_gateway_id}已开始删除")
        return nat_gateway_id

    def start_services(self):
        """启动数据库 -> 启动服务 -> 流量切回应用 -> 创建NAT网关"""
        self.set_database_availability(True)
        self.set_compute_capacity(1)
        self.set_traffic_target("primary")
        self.provision_egress_gateway()

    def stop_services(self):
        """流量切到维护页 -> 停止服务 -> 停止数据库 -> 删除NAT网关"""
        self.set_traffic_target("maintenance")
        self.set_compute_capacity(0)
        self.set_database_availability(False)
        self.teardown_egress_gateway()
