"""Foreign-key dependency ordering for row-filtered table copies."""

import heapq

from goldsync.models import ForeignKeyInfo


def build_table_dependencies(tables: list[str], foreign_keys: list[ForeignKeyInfo]) -> dict[str, set[str]]:
    """Map each table to the parent tables it references.

    Edges to tables outside the set and self-references are discarded.

    Args:
        tables: Qualified table names
        foreign_keys: Foreign key edges

    Returns:
        Dict mapping every table in the set to the set of its in-set parents
    """
    dependencies: dict[str, set[str]] = {table: set() for table in tables}

    for fk in foreign_keys:
        child, parent = fk.child, fk.parent
        if child not in dependencies or parent not in dependencies:
            continue
        if child == parent:
            continue
        dependencies[child].add(parent)

    return dependencies


def sort_tables_by_dependency(tables: list[str], foreign_keys: list[ForeignKeyInfo]) -> list[str]:
    """Order tables so referenced (parent) tables come before the tables referencing them.

    Uses Kahn's algorithm, always taking the lexicographically smallest ready
    table. Tables left over by a cycle are appended in lexicographic order.

    Args:
        tables: Qualified table names (duplicates are collapsed)
        foreign_keys: Foreign key edges among (and beyond) the tables

    Returns:
        Each input table exactly once, parents first
    """
    dependencies = build_table_dependencies(tables, foreign_keys)

    children: dict[str, list[str]] = {table: [] for table in dependencies}
    for child, parents in dependencies.items():
        for parent in parents:
            children[parent].append(child)

    in_degree = {table: len(parents) for table, parents in dependencies.items()}
    ready = [table for table, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    sorted_tables: list[str] = []
    while ready:
        table = heapq.heappop(ready)
        sorted_tables.append(table)

        for child in children[table]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, child)

    # Circular dependency: keep going rather than fail
    if len(sorted_tables) < len(dependencies):
        placed = set(sorted_tables)
        sorted_tables.extend(sorted(table for table in dependencies if table not in placed))

    return sorted_tables
