from typing import Iterator, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger as default_logger

from athena_pg_migrator.errors import PagingError
from athena_pg_migrator.models import ResultPage

MAX_PAGE_SIZE = 1000


class ResultPager:
    """
    分页获取Athena查询结果

    Athena在第一页的第一行返回列名（表头），因此只有在未携带
    continuation token（即首次获取）时才去掉第一行，后续页原样返回。
    """
    
    def __init__(self, client, page_size: int = MAX_PAGE_SIZE, logger=None):
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"分页大小必须在1到{MAX_PAGE_SIZE}之间：{page_size}")
        self.client = client
        self.page_size = page_size
        self.logger = logger or default_logger
    
    @staticmethod
    def _convert_rows(raw_rows: List[dict]) -> List[List[Optional[str]]]:
        # 空值在Athena结果中表现为缺少VarCharValue
        return [[datum.get("VarCharValue") for datum in row.get("Data", [])] for row in raw_rows]
    
    def fetch_page(self, execution_id: str, continuation_token: Optional[str] = None) -> ResultPage:
        """获取一页结果"""
        request = {"QueryExecutionId": execution_id, "MaxResults": self.page_size}
        if continuation_token is not None:
            request["NextToken"] = continuation_token
        try:
            response = self.client.get_query_results(**request)
        except (ClientError, BotoCoreError) as e:
            raise PagingError(f"获取查询{execution_id}结果失败：{str(e)}") from e

        rows = self._convert_rows(response["ResultSet"].get("Rows", []))
        if continuation_token is None and rows:
            rows = rows[1:]
        page = ResultPage(rows=rows, continuation_token=response.get("NextToken"))
        self.logger.debug(f"查询{execution_id}获取到{len(page.rows)}行，是否还有下一页：{page.has_more}")
        return page
    
    def has_more(self, page: ResultPage) -> bool:
        return page.has_more
    
    def pages(self, execution_id: str) -> Iterator[ResultPage]:
        """按需逐页获取，不缓存、不可重复迭代"""
        token = None
        while True:
            page = self.fetch_page(execution_id, token)
            yield page
            if not self.has_more(page):
                return
            token = page.continuation_token
