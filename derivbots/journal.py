import logging
import os

import pandas as pd

log = logging.getLogger("derivbots.journal")

COLUMNS = ["timestamp", "bot", "symbol", "contract_type", "stake", "result", "profit", "total_profit"]


class TradeJournal:
    """Append-only CSV of settled trades."""

    def __init__(self, path: str):
        self.path = path

    def append(self, bot_id: str, symbol: str, record, total_profit: float):
        row = pd.DataFrame([{
            "timestamp": record.time.isoformat(timespec="seconds"),
            "bot": bot_id,
            "symbol": symbol,
            "contract_type": record.type or "",
            "stake": record.stake,
            "result": record.result,
            "profit": record.profit,
            "total_profit": total_profit,
        }], columns=COLUMNS)
        try:
            row.to_csv(self.path, mode="a", header=not os.path.exists(self.path), index=False)
        except OSError as e:
            log.error("journal write failed: %s", e)

    def load(self) -> pd.DataFrame:
        if not os.path.exists(self.path):
            return pd.DataFrame(columns=COLUMNS)
        return pd.read_csv(self.path)

    def summary(self) -> dict:
        df = self.load()
        if df.empty:
            return {"trades": 0, "wins": 0, "losses": 0, "profit": 0.0}
        wins = int((df["result"] == "win").sum())
        return {
            "trades": int(len(df)),
            "wins": wins,
            "losses": int(len(df)) - wins,
            "profit": round(float(df["profit"].sum()), 2),
        }
