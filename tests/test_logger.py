"""Log file layout and command streaming."""

import subprocess
import sys
import time

import pytest

from stackup.logger import DeployLogger, run_with_progress


@pytest.fixture
def verbose_logger(tmp_path):
    log = DeployLogger("test", "deploy", verbose=True, logs_root=tmp_path / "logs")
    yield log
    log.close()


def test_log_file_is_laid_out_by_scope_and_date(logger, tmp_path):
    assert logger.log_path.parent.parent == tmp_path / "logs" / "test"
    assert logger.log_path.name.endswith("_deploy.log")


def test_streaming_survives_large_stderr(verbose_logger):
    script = (
        "import sys\n"
        "sys.stderr.write('e' * 200000)\n"
        "sys.stderr.flush()\n"
        "print('done')\n"
    )

    result = run_with_progress(
        verbose_logger, [sys.executable, "-c", script], "Noisy command", timeout=30
    )

    assert result.is_success
    assert result.stdout == "done"
    assert len(result.stderr) == 200000


def test_streaming_kills_the_command_on_timeout(verbose_logger):
    started = time.monotonic()

    with pytest.raises(subprocess.TimeoutExpired):
        run_with_progress(
            verbose_logger,
            [sys.executable, "-c", "import time; time.sleep(30)"],
            "Slow command",
            timeout=1,
        )

    assert time.monotonic() - started < 15
