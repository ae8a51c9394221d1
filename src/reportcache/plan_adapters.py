"""
Execution plan adapters.

Each adapter turns one database's EXPLAIN output into a PlanNode tree so the
analyzer itself stays database-agnostic.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Sequence, Union

from . import json_utils
from .error_handling import PlanFormatError
from .optimizer import SEQUENTIAL_SCAN, PlanNode

logger = logging.getLogger(__name__)

INDEX_SCAN = "Index Scan"
QUERY_ROOT = "Query"

_SQLITE_SCAN = re.compile(r"^SCAN (?:TABLE )?(?P<table>\w+)")
_SQLITE_SEARCH = re.compile(r"^SEARCH (?:TABLE )?(?P<table>\w+)")


# ----------------------------------------------------------------------
# PostgreSQL: EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON)
# ----------------------------------------------------------------------


def _postgres_node(node: Dict[str, Any]) -> PlanNode:
    if not isinstance(node, dict) or "Node Type" not in node:
        raise PlanFormatError(
            "Plan node without 'Node Type'", {"node_type": type(node).__name__}
        )

    rows = node.get("Actual Rows", node.get("Plan Rows", 0))
    raw = {k: v for k, v in node.items() if k != "Plans"}
    return PlanNode(
        node_type=node["Node Type"],
        relation_name=node.get("Relation Name"),
        actual_rows=rows or 0,
        total_cost=float(node.get("Total Cost", 0.0) or 0.0),
        children=[_postgres_node(child) for child in node.get("Plans", [])],
        raw=raw,
    )


def from_postgres_plan(payload: Union[str, bytes, List[Any], Dict[str, Any]]) -> PlanNode:
    """
    Convert a Postgres JSON plan into a PlanNode tree.

    Accepts the raw JSON text, the decoded ``[{"Plan": {...}}]`` list, a single
    ``{"Plan": {...}}`` document, or a bare plan node.

    Raises:
        PlanFormatError: If the payload is not a recognisable plan
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json_utils.loads(payload)
        except ValueError as e:
            raise PlanFormatError(f"Plan is not valid JSON: {e}") from e

    if isinstance(payload, list):
        if not payload:
            raise PlanFormatError("Empty execution plan")
        payload = payload[0]

    if isinstance(payload, dict) and "Plan" in payload:
        payload = payload["Plan"]

    if not isinstance(payload, dict):
        raise PlanFormatError(
            "Unexpected execution plan payload", {"payload_type": type(payload).__name__}
        )

    return _postgres_node(payload)


# ----------------------------------------------------------------------
# SQLite: EXPLAIN QUERY PLAN
# ----------------------------------------------------------------------


def _sqlite_node(detail: str) -> PlanNode:
    scan = _SQLITE_SCAN.match(detail)
    if scan:
        return PlanNode(SEQUENTIAL_SCAN, relation_name=scan.group("table"), raw={"detail": detail})

    # SEARCH is always keyed: an index or an integer primary key lookup
    search = _SQLITE_SEARCH.match(detail)
    if search:
        return PlanNode(INDEX_SCAN, relation_name=search.group("table"), raw={"detail": detail})

    return PlanNode(detail, raw={"detail": detail})


def from_sqlite_plan(rows: Iterable[Sequence[Any]]) -> PlanNode:
    """
    Build a PlanNode tree from ``EXPLAIN QUERY PLAN`` rows.

    Each row is ``(id, parent, notused, detail)``; rows whose parent is 0 hang
    off a synthetic root. SQLite reports neither costs nor row counts, so
    those stay 0 and only scan-type information is available.
    """
    root = PlanNode(QUERY_ROOT)
    nodes: Dict[int, PlanNode] = {0: root}

    for row in rows:
        try:
            node_id, parent_id, detail = int(row[0]), int(row[1]), str(row[3])
        except (IndexError, TypeError, ValueError) as e:
            raise PlanFormatError(f"Malformed EXPLAIN QUERY PLAN row: {row!r}") from e

        node = _sqlite_node(detail)
        nodes[node_id] = node
        parent = nodes.get(parent_id)
        if parent is None:
            logger.debug(f"Plan row {node_id} references unknown parent {parent_id}")
            parent = root
        parent.children.append(node)

    return root
