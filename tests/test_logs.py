import logging
import os
import time

from opsutility.logs import prune_old_logs, setup_logging


def test_prune_removes_only_old_logs(tmp_path):
    now = time.time()
    old = tmp_path / "podcast-20200101-000000.log"
    fresh = tmp_path / "podcast-20260101-000000.log"
    other = tmp_path / "notes.txt"
    for path in (old, fresh, other):
        path.write_text("x")
    os.utime(old, (now - 15 * 86400, now - 15 * 86400))
    os.utime(other, (now - 30 * 86400, now - 30 * 86400))

    removed = prune_old_logs("podcast", tmp_path, max_age_days=14, now=now)

    assert removed == [old]
    assert not old.exists()
    assert fresh.exists()
    assert other.exists()


def test_prune_keeps_persistent_logs_of_other_commands(tmp_path):
    now = time.time()
    stale = now - 20 * 86400
    persistent = [tmp_path / name for name in ("update.log", "clouddrive.log", "iis-account.log", "podcast.log")]
    per_run = tmp_path / "podcast-20200101-000000.log"
    for path in persistent + [per_run]:
        path.write_text("x")
        os.utime(path, (stale, stale))

    removed = prune_old_logs("podcast", tmp_path, max_age_days=14, now=now)

    assert removed == [per_run]
    assert all(path.exists() for path in persistent)


def test_prune_missing_directory(tmp_path):
    assert prune_old_logs("podcast", tmp_path / "nope") == []


def test_per_run_log_file(tmp_path):
    log_file = setup_logging("podcast", per_run=True, log_dir=tmp_path)
    logging.getLogger("opsutility.test").info("hello from the test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_file.parent == tmp_path
    assert log_file.name.startswith("podcast-") and log_file.suffix == ".log"
    assert "hello from the test" in log_file.read_text(encoding="utf-8")


def test_persistent_log_file(tmp_path):
    assert setup_logging("clouddrive", log_dir=tmp_path) == tmp_path / "clouddrive.log"
