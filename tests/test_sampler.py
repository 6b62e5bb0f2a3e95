"""Tests for PeriodicSampler and GpuProcessMonitor."""

import re
import time

from benchmon.sampler import GPU_PROCESS_HEADER, GpuProcessMonitor, PeriodicSampler


def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll until predicate() is true."""
    deadline = time.time() + timeout
    while not predicate():
        assert time.time() < deadline, "condition not met in time"
        time.sleep(0.01)


class TestPeriodicSampler:
    """Tests for PeriodicSampler."""

    def test_sampler_creation(self, tmp_path):
        """Test PeriodicSampler can be instantiated."""
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), 2.0)

        assert sampler.interval == 2.0
        assert sampler.ticks == 0
        assert not sampler.is_running

    def test_sampler_start_stop(self, tmp_path):
        """Test PeriodicSampler can be started and stopped."""
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), 0.1)

        sampler.start()
        assert sampler.is_running

        sampler.stop()
        assert not sampler.is_running

    def test_sampler_start_idempotent(self, tmp_path):
        """Test starting an already running sampler is safe."""
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), 0.1)

        sampler.start()
        thread1 = sampler._thread
        sampler.start()
        thread2 = sampler._thread

        assert thread1 is thread2
        sampler.stop()

    def test_stop_is_idempotent(self, tmp_path):
        """Test stopping twice, or stopping a never-started sampler, is a no-op."""
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), 0.1)
        sampler.stop()

        sampler.start()
        sampler.stop()
        sampler.stop()

        assert not sampler.is_running

    def test_thread_is_joined_not_daemon(self, tmp_path):
        """Test the sampler thread is a named, non-daemon thread."""
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), 0.1)
        sampler.start()

        try:
            assert sampler._thread is not None
            assert sampler._thread.daemon is False
            assert sampler._thread.name == "PeriodicSampler-free"
        finally:
            sampler.stop()

    def test_header_and_samples(self, tmp_path):
        """Test the header line precedes full samples separated by blank lines."""
        out = tmp_path / "run.free.out"
        sampler = PeriodicSampler("free", ("echo", "mem"), str(out), 0.1)

        sampler.start()
        time.sleep(0.35)
        sampler.stop()

        lines = out.read_text().splitlines()
        assert re.fullmatch(
            r"\[free\] Monitoring started at \S+, interval: 0\.1 seconds", lines[0]
        )
        assert lines[1:3] == ["mem", ""]
        assert lines[1:].count("mem") == sampler.ticks

    def test_tick_count_matches_duration(self, tmp_path):
        """Test roughly floor(duration / interval) samples are taken."""
        interval = 0.2
        duration = 1.0
        sampler = PeriodicSampler("free", ("echo", "mem"), str(tmp_path / "f.out"), interval)

        sampler.start()
        time.sleep(duration)
        sampler.stop()

        expected = int(duration / interval)
        assert expected - 1 <= sampler.ticks <= expected + 1

    def test_stop_during_sleep_is_prompt(self, tmp_path):
        """Test stop interrupts the interval wait without a partial sample."""
        out = tmp_path / "f.out"
        sampler = PeriodicSampler("free", ("echo", "mem"), str(out), 30.0)

        sampler.start()
        time.sleep(0.2)
        start = time.time()
        sampler.stop()

        assert time.time() - start < 2.0
        assert sampler.ticks == 1
        assert out.read_text().splitlines()[1:] == ["mem", ""]

    def test_missing_command_ends_loop(self, tmp_path, caplog):
        """Test a sampler whose command cannot run stops and logs."""
        sampler = PeriodicSampler(
            "free", ("benchmon-no-such-tool",), str(tmp_path / "f.out"), 0.1
        )

        sampler.start()
        sampler._thread.join(timeout=5.0)

        assert not sampler.is_running
        assert sampler.ticks == 0
        assert "free monitoring interrupted" in caplog.text
        sampler.stop()


class TestGpuProcessMonitor:
    """Tests for GpuProcessMonitor."""

    def test_csv_header_and_timestamped_rows(self, tmp_path):
        """Test each reported process becomes one timestamped CSV row."""
        out = tmp_path / "run.gpu-process.out"
        fake_smi = ("printf", "1234, python3, 2048\n4321, trainer, 512\n")
        monitor = GpuProcessMonitor(0.1, str(out), command=fake_smi)

        monitor.start()
        wait_until(lambda: monitor.ticks >= 1)
        monitor.stop()

        lines = out.read_text().splitlines()
        assert lines[0] + "\n" == GPU_PROCESS_HEADER
        assert re.fullmatch(
            r"\d{4}-\d\d-\d\d \d\d:\d\d:\d\d,1234, python3, 2048", lines[1]
        )
        assert lines[2].endswith(",4321, trainer, 512")

    def test_empty_output_writes_only_header(self, tmp_path):
        """Test no rows are written when no process uses the GPU."""
        out = tmp_path / "run.gpu-process.out"
        monitor = GpuProcessMonitor(0.1, str(out), command=("true",))

        monitor.start()
        wait_until(lambda: monitor.ticks >= 1)
        monitor.stop()

        assert out.read_text() == GPU_PROCESS_HEADER
        assert monitor.name == "gpu-process"
