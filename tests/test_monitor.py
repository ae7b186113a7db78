import sys
import threading

from flowsheets.channel import LocalChannel, compiler_topic, runner_topic
from flowsheets.monitor import RunMonitor
from flowsheets.runner import ProcessRunner


def make_monitor(channel, sheet_id="s1", **kwargs):
    return RunMonitor(sheet_id, 1, channel.subscribe(runner_topic(sheet_id)), poll_interval=0.01, **kwargs)


def test_poll_orders_and_stops_on_completion():
    channel = LocalChannel()
    monitor = make_monitor(channel)
    topic = runner_topic("s1")
    channel.publish(topic, {"sequence": 1, "content": "working"})
    channel.publish(topic, {"sequence": 0, "content": "Starting flow execution..."})
    assert [l.content for l in monitor.poll()] == ["Starting flow execution...", "working"]
    channel.publish(topic, {"sequence": 2, "content": "Flow execution failed with exit code: 1"})
    monitor.poll()
    assert monitor.completed and not monitor.active
    assert channel.subscribers(topic) == 0
    # stale events for the same run are not solicited any more
    channel.publish(topic, {"sequence": 3, "content": "stale"})
    assert monitor.poll() == []
    assert monitor.lines[-1].content.endswith("exit code: 1")


def test_legacy_lines_flush_on_poll_tick():
    channel = LocalChannel()
    monitor = make_monitor(channel)
    topic = runner_topic("s1")
    channel.publish(topic, {"sequence": 0, "content": "a"})
    channel.publish(topic, "legacy line")
    channel.publish(topic, {"sequence": 1, "content": "b"})
    lines = monitor.poll()
    assert [l.content for l in lines] == ["a", "b", "legacy line"]


def test_channel_failure_surfaces():
    channel = LocalChannel()
    finished = []
    monitor = make_monitor(channel, on_finish=finished.append)
    channel.fail(runner_topic("s1"), "connection lost")
    monitor.poll()
    assert "connection lost" in monitor.failure
    assert finished == [monitor]
    assert not monitor.active


def test_cancel_unsubscribes_and_discards_inbox():
    channel = LocalChannel()
    monitor = make_monitor(channel)
    channel.publish(runner_topic("s1"), {"sequence": 0, "content": "buffered"})
    monitor.cancel()
    assert monitor.cancelled
    assert channel.subscribers(runner_topic("s1")) == 0
    assert monitor.poll() == []
    assert monitor.wait(timeout=0.05) is False


def test_wait_times_out_without_progress():
    monitor = make_monitor(LocalChannel())
    assert monitor.wait(timeout=0.05) is False
    assert monitor.active


def test_wait_collects_lines_from_another_thread():
    channel = LocalChannel()
    monitor = make_monitor(channel)
    topic = runner_topic("s1")

    def produce():
        for i, text in enumerate(["one", "two", "Flow execution completed successfully"]):
            channel.publish(topic, {"sequence": i, "content": text})

    seen = []
    threading.Thread(target=produce).start()
    assert monitor.wait(timeout=5, on_lines=seen.extend)
    assert [l.content for l in seen] == ["one", "two", "Flow execution completed successfully"]


def test_process_runner_streams_sequenced_output():
    channel = LocalChannel()
    sub = channel.subscribe(compiler_topic("s1"))
    monitor = RunMonitor("s1", 1, sub, poll_interval=0.01)
    runner = ProcessRunner.compiler(
        channel, lambda sheet_id, project_id: [sys.executable, "-c", "print('alpha'); print('beta')"])
    runner.trigger("s1", "p1")
    assert monitor.wait(timeout=30)
    contents = [l.content for l in monitor.lines]
    assert contents[0] == "Starting compilation..."
    assert contents[2:4] == ["alpha", "beta"]
    assert contents[-1] == "Compilation completed successfully"
    assert [l.sequence for l in monitor.lines] == list(range(len(contents)))


def test_process_runner_reports_launch_error_unsequenced():
    channel = LocalChannel()
    monitor = make_monitor(channel)
    runner = ProcessRunner(channel, lambda sheet_id, project_id: ["/nonexistent/flowsheets-binary"])
    runner.trigger("s1", "p1")
    runner.join(10)
    assert monitor.wait(timeout=5)
    assert monitor.lines[-1].legacy
    assert monitor.lines[-1].content.startswith("Execution error:")
