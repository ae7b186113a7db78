from __future__ import annotations
import logging
import subprocess
import threading
import time
from typing import Callable, List, Optional, Protocol, Sequence

from .channel import ProgressChannel, compiler_topic, runner_topic

log = logging.getLogger(__name__)

CommandFactory = Callable[[str, str], Sequence[str]]


class RunTrigger(Protocol):
    def trigger(self, sheet_id: str, project_id: str) -> None: ...


class ProcessRunner:
    """
    Fire-and-forget trigger: runs an external command for a sheet and streams its
    output to the sheet's topic as sequenced progress. Nothing is returned to the
    caller; progress is only observable on the channel.
    """

    def __init__(self, channel: ProgressChannel, command: CommandFactory, *,
                 label: str = "Flow execution", topic: Callable[[str], str] = runner_topic,
                 cwd: Optional[str] = None):
        self.channel = channel
        self.command = command
        self.label = label
        self.topic = topic
        self.cwd = cwd
        self._threads: List[threading.Thread] = []

    @classmethod
    def compiler(cls, channel: ProgressChannel, command: CommandFactory, **kwargs) -> "ProcessRunner":
        return cls(channel, command, label="Compilation", topic=compiler_topic, **kwargs)

    def trigger(self, sheet_id: str, project_id: str) -> None:
        t = threading.Thread(target=self._run, args=(sheet_id, project_id),
                             name=f"run-{sheet_id}", daemon=True)
        self._threads.append(t)
        t.start()

    def join(self, timeout: Optional[float] = None) -> None:
        for t in self._threads:
            t.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    def _run(self, sheet_id: str, project_id: str) -> None:
        topic = self.topic(sheet_id)
        seq = 0

        def send(content: str) -> None:
            nonlocal seq
            self.channel.publish(topic, {"sequence": seq, "content": content, "timestamp": time.time()})
            seq += 1

        try:
            argv = list(self.command(sheet_id, project_id))
            send(f"Starting {self.label.lower()}...")
            send("Command: " + " ".join(argv))
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                    text=True, cwd=self.cwd)
            with proc.stdout:
                for line in proc.stdout:
                    send(line.rstrip("\n"))
            code = proc.wait()
            if code == 0:
                send(f"{self.label} completed successfully")
            else:
                send(f"{self.label} failed with exit code: {code}")
        except Exception as e:
            log.exception("run for sheet %s could not be launched", sheet_id)
            self.channel.publish(topic, {"sequence": -1, "content": f"Execution error: {e}",
                                         "timestamp": time.time()})
