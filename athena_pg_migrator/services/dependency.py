from collections import deque
from typing import Dict, List, Sequence

from athena_pg_migrator.errors import ConfigurationError, CyclicDependencyError
from athena_pg_migrator.models import TableDefinition


def order_tables(tables: Sequence[TableDefinition]) -> List[TableDefinition]:
    """
    计算加载顺序，保证被外键引用的表先加载
    未声明依赖时保持配置顺序；同一层级内也保持配置顺序
    """
    if not any(table.depends_on for table in tables):
        return list(tables)

    by_name: Dict[str, TableDefinition] = {table.source_name: table for table in tables}
    position = {table.source_name: idx for idx, table in enumerate(tables)}
    in_degree = {table.source_name: 0 for table in tables}
    dependents: Dict[str, List[str]] = {table.source_name: [] for table in tables}

    for table in tables:
        for parent in set(table.depends_on):
            if parent not in by_name:
                raise ConfigurationError(f"表{table.source_name}依赖的表{parent}不在迁移列表中")
            if parent == table.source_name:
                raise CyclicDependencyError([table.source_name])
            dependents[parent].append(table.source_name)
            in_degree[table.source_name] += 1

    # Kahn算法
    queue = deque(name for name in in_degree if in_degree[name] == 0)
    ordered: List[TableDefinition] = []
    while queue:
        name = queue.popleft()
        ordered.append(by_name[name])
        for dependent in sorted(dependents[name], key=position.get):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(tables):
        remaining = sorted((name for name in in_degree if in_degree[name] > 0), key=position.get)
        raise CyclicDependencyError(remaining)
    return ordered
