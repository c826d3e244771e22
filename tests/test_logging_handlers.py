import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

from imagechat.logging_handlers import DateStampedFileHandler, cleanup_old_logs


def test_date_stamped_file_handler_creates_expected_path(tmp_path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(
        tmp_path / "logs",
        prefix="server",
        current_time=current,
    )
    try:
        expected = (tmp_path / "logs" / "2024-05-26" / "server_2024-05-26_12-34-56_UTC.log").resolve()
        file_path = Path(handler.baseFilename)
        assert file_path == expected
        assert file_path.exists()

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg="hello world",
            args=(),
            exc_info=None,
        )
        handler.emit(record)
        assert "hello world" in file_path.read_text(encoding="utf-8")
    finally:
        handler.close()


def test_cleanup_old_logs(tmp_path) -> None:
    log_dir = tmp_path / "logs"
    old_dir = log_dir / "2024-01-01"
    new_dir = log_dir / "2024-01-03"
    old_dir.mkdir(parents=True)
    new_dir.mkdir(parents=True)

    old_file = old_dir / "old.log"
    new_file = new_dir / "new.log"
    old_file.write_text("old")
    new_file.write_text("new")
    stale = time.time() - 72 * 3600
    os.utime(old_file, (stale, stale))

    deleted, errors = cleanup_old_logs([log_dir], retention_hours=48)

    assert (deleted, errors) == (1, 0)
    assert not old_file.exists()
    assert not old_dir.exists()
    assert new_file.exists()


def test_cleanup_disabled_and_missing_directories(tmp_path) -> None:
    assert cleanup_old_logs([tmp_path / "logs"], retention_hours=0) == (0, 0)
    assert cleanup_old_logs([tmp_path / "absent"], retention_hours=1) == (0, 0)
