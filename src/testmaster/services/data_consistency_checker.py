"""Cross-panel data consistency checks on listing tables."""

import logging
import re
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from ..core.models import (
    DataConsistencyIssue,
    DataConsistencyResult,
    IssueSeverity,
    PageInfo,
    PanelType,
    TableInfo,
)

logger = logging.getLogger(__name__)

# Columns that only carry controls, never entity data
IGNORED_HEADERS = {"", "action", "actions", "options", "manage", "select"}

Signature = Tuple[str, ...]
Rows = Dict[str, Tuple[str, ...]]


def _normalize(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip().lower()


def table_signature(table: TableInfo) -> Tuple[Optional[Signature], List[int]]:
    """Normalized data headers of a table and the column indexes they occupy."""
    columns = [(i, _normalize(h)) for i, h in enumerate(table.headers) if _normalize(h) not in IGNORED_HEADERS]
    if not columns:
        return None, []
    return tuple(name for _, name in columns), [i for i, _ in columns]


class DataConsistencyChecker:
    """
    Compares entities shown by listing tables in different panels.

    Tables match when their normalized headers match. Rows are keyed by
    their first data cell; every row a lower-privilege panel shows must be
    present in a higher-privilege one with the same cells.
    """

    def collect(self, panel_pages: Dict[PanelType, List[PageInfo]]) -> Dict[Signature, Dict[PanelType, Rows]]:
        """Rows per table signature per panel, merged across the panel's pages."""
        tables: Dict[Signature, Dict[PanelType, Rows]] = {}
        for panel, pages in panel_pages.items():
            for page in pages:
                for table in page.tables:
                    signature, indexes = table_signature(table)
                    if signature is None:
                        continue
                    rows = tables.setdefault(signature, {}).setdefault(panel, {})
                    for row in table.rows:
                        cells = tuple(_normalize(row[i]) if i < len(row) else '' for i in indexes)
                        if cells and cells[0]:
                            rows.setdefault(cells[0], cells)
        return tables

    def check(self, panel_pages: Dict[PanelType, List[PageInfo]]) -> DataConsistencyResult:
        result = DataConsistencyResult()

        for signature, by_panel in self.collect(panel_pages).items():
            panels = sorted(by_panel, key=lambda p: p.privilege)
            for lower, higher in combinations(panels, 2):
                self._compare(signature, lower, by_panel[lower], higher, by_panel[higher], result)

        logger.info(f"Data consistency: {result.failed} issues in {result.total_checks} checks")
        return result

    def _compare(self, signature: Signature, lower: PanelType, lower_rows: Rows,
                 higher: PanelType, higher_rows: Rows, result: DataConsistencyResult) -> None:
        entity = signature[0]
        for key, cells in lower_rows.items():
            result.total_checks += 1
            other = higher_rows.get(key)
            if other is None:
                result.issues.append(DataConsistencyIssue(
                    check_name=f"{entity} '{key}' visible in {higher.value}",
                    expected=list(cells),
                    actual=None,
                    panels=[lower, higher],
                    severity=IssueSeverity.HIGH,
                    message=f"'{key}' is shown in the {lower.value} panel but missing from the {higher.value} panel",
                ))
            elif other != cells:
                differing = [signature[i] for i, (a, b) in enumerate(zip(cells, other)) if a != b]
                result.issues.append(DataConsistencyIssue(
                    check_name=f"{entity} '{key}' matches across panels",
                    expected=list(cells),
                    actual=list(other),
                    panels=[lower, higher],
                    severity=IssueSeverity.MEDIUM,
                    message=f"'{key}' differs between {lower.value} and {higher.value} in: {', '.join(differing)}",
                ))
