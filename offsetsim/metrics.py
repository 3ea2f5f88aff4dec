from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    offset_rows: List[Dict[str, Any]] = field(default_factory=list)
    pool_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_offset(self, row: Dict[str, Any]) -> None:
        self.offset_rows.append(row)

    def add_pool_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.pool_rows.extend(rows)

    def offsets_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.offset_rows)

    def pools_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.pool_rows)

    def retired_by_flow(self) -> pd.DataFrame:
        df = self.offsets_df()
        if df.empty:
            return pd.DataFrame(columns=["flow", "offsets", "tonnes_retired"])
        executed = df[df["status"] == "executed"]
        return (
            executed.groupby("flow")
            .agg(offsets=("block", "count"), tonnes_retired=("tonnes_retired", "sum"))
            .reset_index()
        )
