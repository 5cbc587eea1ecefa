import re
from typing import Iterable, List, Optional, Sequence

from psycopg2 import sql

from athena_pg_migrator.errors import ConfigurationError
from athena_pg_migrator.models import InsertBatch, TableDefinition

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_athena_identifier(identifier: str) -> str:
    """Athena（Trino）标识符使用双引号，避免与保留字冲突"""
    return '"' + identifier.replace('"', '""') + '"'


class StatementBuilder:
    """
    SQL语句构造器

    表名/列名只接受匹配IDENTIFIER_PATTERN且在白名单（由解析后的元数据生成）中的标识符，
    并且始终加引号：抽取查询使用双引号，INSERT使用psycopg2.sql.Identifier。
    """
    
    def __init__(self, allowed_identifiers: Iterable[str] = (), schema: Optional[str] = None):
        self.allowed_identifiers = set(allowed_identifiers)
        self.schema = schema
        if schema is not None:
            self._check_pattern(schema)

    @classmethod
    def from_tables(cls, tables: Iterable[TableDefinition], schema: Optional[str] = None) -> "StatementBuilder":
        """根据已解析的表定义生成白名单"""
        allowed = set()
        for table in tables:
            allowed.add(table.source_name)
            allowed.add(table.target_name)
            allowed.update(table.columns)
        return cls(allowed, schema)

    def _check_pattern(self, identifier: str):
        if not isinstance(identifier, str) or not IDENTIFIER_PATTERN.match(identifier):
            raise ConfigurationError(f"非法标识符：{identifier!r}")

    def validate_identifier(self, identifier: str) -> str:
        self._check_pattern(identifier)
        if identifier not in self.allowed_identifiers:
            raise ConfigurationError(f"标识符{identifier}不在元数据白名单中")
        return identifier

    def qualified_name(self, table: str) -> sql.Identifier:
        self.validate_identifier(table)
        if self.schema:
            return sql.Identifier(self.schema, table)
        return sql.Identifier(table)

    def build_select(self, table: TableDefinition) -> str:
        """生成抽取查询：SELECT "<column>", ... FROM "<source>" """
        if not table.columns:
            raise ConfigurationError(f"表{table.source_name}没有可抽取的列")
        columns = ", ".join(quote_athena_identifier(self.validate_identifier(c)) for c in table.columns)
        return f"SELECT {columns} FROM {quote_athena_identifier(self.validate_identifier(table.source_name))}"

    def validate_table(self, table: TableDefinition):
        """抽取开始前检查源表、目标表及全部列名"""
        self.build_select(table)
        self.qualified_name(table.target_name)

    def build_insert(self, target_table: str, columns: Sequence[str], rows: List[List[Optional[str]]]) -> InsertBatch:
        """
        生成多行参数化INSERT
        第i行第j列使用第 i*len(columns)+j+1 号参数，与扁平化后的值列表一一对应
        """
        if not rows:
            raise ValueError(f"表{target_table}的批次为空，不生成INSERT语句")
        if not columns:
            raise ConfigurationError(f"表{target_table}没有列定义")

        column_count = len(columns)
        column_names = sql.SQL(", ").join(sql.Identifier(self.validate_identifier(c)) for c in columns)
        values = []
        value_rows = []
        for row_index, row in enumerate(rows):
            if len(row) != column_count:
                raise ValueError(
                    f"表{target_table}第{row_index + 1}行列数为{len(row)}，与列定义数量{column_count}不一致"
                )
            placeholders = sql.SQL(", ").join(
                sql.Placeholder(f"p{row_index * column_count + col_index + 1}") for col_index in range(column_count)
            )
            value_rows.append(sql.SQL("({})").format(placeholders))
            values.extend(row)

        statement = sql.SQL("INSERT INTO {} ({}) VALUES {}").format(
            self.qualified_name(target_table),
            column_names,
            sql.SQL(", ").join(value_rows)
        )
        return InsertBatch(
            target_table=target_table,
            columns=tuple(columns),
            rows=rows,
            parameter_values=values,
            sql=statement
        )
