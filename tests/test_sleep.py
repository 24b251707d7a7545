import sys

from work_timer.sleep import SleepWatcher, default_sleep_watcher


def test_notify_maps_logind_flag_to_signals():
    watcher = SleepWatcher()
    calls = []
    watcher.suspended.connect(lambda: calls.append("suspend"))
    watcher.resumed.connect(lambda: calls.append("resume"))

    watcher.notify(True)
    watcher.notify(False)

    assert calls == ["suspend", "resume"]


def test_stop_without_start_is_harmless():
    watcher = SleepWatcher()
    watcher.stop()
    assert watcher.is_available() is False


def test_default_watcher_only_on_linux():
    watcher = default_sleep_watcher()
    if sys.platform.startswith("linux"):
        assert isinstance(watcher, SleepWatcher)
    else:
        assert watcher is None
