from derivbots.publisher import (
    EMPTY_SNAPSHOT, UpdatePublisher, format_running_time, progress_in_range,
    progress_to_target, win_rate,
)


def test_running_time_format():
    assert format_running_time(0) == "00:00:00"
    assert format_running_time(3661.9) == "01:01:01"
    assert format_running_time(None) == "00:00:00"


def test_win_rate_is_zero_without_trades():
    assert win_rate(0, 0) == "0.00"
    assert win_rate(1, 3) == "33.33"
    assert win_rate(2, 3) == "66.67"


def test_two_progress_readings():
    assert progress_to_target(5, 10) == "50.00"
    assert progress_to_target(-2, 10) == "-20.00"
    assert progress_in_range(0, 100, 50) == "33.33"
    assert progress_in_range(-50, 100, 50) == "0.00"


def test_last_registration_wins():
    publisher = UpdatePublisher()
    first, second = [], []
    publisher.set_callback(first.append)
    publisher.set_callback(second.append)
    publisher.publish(EMPTY_SNAPSHOT)
    assert first == [] and second == [EMPTY_SNAPSHOT]


def test_failing_observer_does_not_propagate():
    publisher = UpdatePublisher()

    def broken(snapshot):
        raise RuntimeError("ui gone")

    publisher.set_callback(broken)
    publisher.publish(EMPTY_SNAPSHOT)


def test_snapshot_dict_uses_camel_case():
    data = EMPTY_SNAPSHOT.to_dict()
    assert data["winRate"] == "0.00"
    assert data["tradeHistory"] == []
    assert set(data) >= {"currentStake", "totalProfit", "totalTrades", "consecutiveLosses",
                         "runningTime", "progressToTarget", "progressInRange"}
