from datetime import datetime

from derivbots.journal import TradeJournal
from derivbots.publisher import TradeRecord


def record(result, profit):
    return TradeRecord(time=datetime(2026, 3, 1, 9, 30), stake=1.0, result=result, profit=profit, type="DIGITEVEN")


def test_append_and_summary(tmp_path):
    journal = TradeJournal(str(tmp_path / "journal.csv"))
    assert journal.summary() == {"trades": 0, "wins": 0, "losses": 0, "profit": 0.0}

    journal.append("evenbot", "R_10", record("loss", -1.0), -1.0)
    journal.append("evenbot", "R_10", record("win", 0.95), -0.05)

    df = journal.load()
    assert list(df["result"]) == ["loss", "win"]
    assert df.loc[1, "contract_type"] == "DIGITEVEN"
    assert journal.summary() == {"trades": 2, "wins": 1, "losses": 1, "profit": -0.05}


def test_write_failure_is_logged_not_raised(tmp_path):
    journal = TradeJournal(str(tmp_path / "missing-dir" / "journal.csv"))
    journal.append("evenbot", "R_10", record("win", 1.0), 1.0)
