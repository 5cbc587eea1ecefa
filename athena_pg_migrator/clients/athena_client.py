import boto3
from botocore.exceptions import BotoCoreError, ClientError
from typing import List, Optional

from athena_pg_migrator.errors import ConfigurationError


class AthenaClientManager:
    """Athena客户端管理器"""
    
    def __init__(self):
        self.client = None
    
    def create_client(self, region: Optional[str] = None):
        """创建Athena客户端（凭证从环境变量/默认凭证链获取）"""
        try:
            client = boto3.client("athena", region_name=region)
            self.client = client
            return client
        except BotoCoreError as e:
            raise ConfigurationError(f"Athena客户端创建失败：{str(e)}") from e
    
    def get_table_columns(self, client, catalog: str, database: str, table: str) -> List[str]:
        """从数据目录读取表的列名（按定义顺序）"""
        try:
            response = client.get_table_metadata(
                CatalogName=catalog,
                DatabaseName=database,
                TableName=table
            )
        except (ClientError, BotoCoreError) as e:
            raise ConfigurationError(f"获取表{database}.{table}元数据失败：{str(e)}") from e

        columns = [column["Name"] for column in response["TableMetadata"].get("Columns", [])]
        if not columns:
            raise ConfigurationError(f"表{database}.{table}在数据目录中没有任何列")
        return columns
