import base64
import os
import re
import stat
from unittest.mock import patch

import pytest

from wasf_installer import postinstall
from wasf_installer.postinstall import (
    PostInstallError,
    PostInstallStep,
    default_steps,
    generate_app_key,
    generate_secret,
    run_post_install,
    run_step,
    set_env_value,
    widen_storage_permissions,
)

KEY_LINE = re.compile(r"^WASF_KEY=(.*)$", re.MULTILINE)


def key_values(env_path):
    return KEY_LINE.findall(env_path.read_text())


class TestGenerateSecret:
    def test_decodes_to_32_bytes(self):
        secret = generate_secret()

        assert len(secret) == 44
        assert len(base64.b64decode(secret, validate=True)) == 32

    def test_values_differ(self):
        assert generate_secret() != generate_secret()


class TestSetEnvValue:
    def test_creates_missing_file(self, tmp_path):
        env = tmp_path / ".env"

        set_env_value(env, "WASF_KEY", "abc")

        assert env.read_text() == "WASF_KEY=abc\n"

    def test_replaces_existing_value_in_place(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("APP_NAME=demo\nWASF_KEY=\nDB_HOST=localhost\n")

        set_env_value(env, "WASF_KEY", "abc")

        assert env.read_text() == "APP_NAME=demo\nWASF_KEY=abc\nDB_HOST=localhost\n"

    def test_second_run_leaves_one_line_with_latest_value(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("APP_NAME=demo\n")

        set_env_value(env, "WASF_KEY", "first")
        set_env_value(env, "WASF_KEY", "second")

        assert key_values(env) == ["second"]

    def test_collapses_duplicate_definitions(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("WASF_KEY=one\nAPP_NAME=demo\nWASF_KEY=two\n")

        set_env_value(env, "WASF_KEY", "three")

        assert env.read_text() == "WASF_KEY=three\nAPP_NAME=demo\n"

    def test_appends_after_line_without_trailing_newline(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("APP_NAME=demo")

        set_env_value(env, "WASF_KEY", "abc")

        assert env.read_text() == "APP_NAME=demo\nWASF_KEY=abc\n"

    def test_similar_keys_are_left_alone(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("WASF_KEY_OLD=keep\n")

        set_env_value(env, "WASF_KEY", "abc")

        assert env.read_text() == "WASF_KEY_OLD=keep\nWASF_KEY=abc\n"


class TestGenerateAppKey:
    def test_creates_env_file_with_valid_key(self, tmp_path):
        generate_app_key(tmp_path)

        values = key_values(tmp_path / ".env")
        assert len(values) == 1
        assert len(base64.b64decode(values[0], validate=True)) == 32

    def test_is_idempotent(self, tmp_path):
        with patch("wasf_installer.postinstall.generate_secret", side_effect=["AAAA", "BBBB"]):
            generate_app_key(tmp_path)
            generate_app_key(tmp_path)

        assert key_values(tmp_path / ".env") == ["BBBB"]


@pytest.mark.skipif(os.name != "posix", reason="chmod semantics are POSIX only")
class TestWidenStoragePermissions:
    def test_sets_777_recursively(self, tmp_path):
        storage = tmp_path / "storage"
        logs = storage / "logs"
        logs.mkdir(parents=True)
        log_file = logs / "app.log"
        log_file.write_text("")
        log_file.chmod(0o600)
        logs.chmod(0o700)
        storage.chmod(0o700)

        widen_storage_permissions(tmp_path)

        for path in (storage, logs, log_file):
            assert stat.S_IMODE(path.stat().st_mode) == 0o777

    def test_missing_storage_is_an_error(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            widen_storage_permissions(tmp_path)


class TestRunStep:
    def test_returns_result_and_marks_completion(self, quiet_console):
        result = run_step("Generating WASF_KEY", lambda: 42, console=quiet_console, min_duration=0)

        assert result == 42
        assert "✔ Generating WASF_KEY" in quiet_console.file.getvalue()

    def test_waits_out_minimum_duration(self, quiet_console, fake_clock):
        def quick_work():
            fake_clock.now += 0.1

        run_step("Quick", quick_work, console=quiet_console, min_duration=0.5,
                 clock=fake_clock, sleep=fake_clock.sleep)

        assert fake_clock.sleeps == [pytest.approx(0.4)]

    def test_slow_work_is_not_padded(self, quiet_console, fake_clock):
        def slow_work():
            fake_clock.now += 2.0

        run_step("Slow", slow_work, console=quiet_console, min_duration=0.5,
                 clock=fake_clock, sleep=fake_clock.sleep)

        assert fake_clock.sleeps == []

    def test_failure_is_reraised(self, quiet_console):
        def broken():
            raise PermissionError("denied")

        with pytest.raises(PermissionError):
            run_step("Broken", broken, console=quiet_console, min_duration=0)

        output = quiet_console.file.getvalue()
        assert "✘ Broken" in output
        assert "✔ Broken" not in output


class TestRunPostInstall:
    def test_runs_steps_in_order(self, tmp_path, quiet_console, no_step_delay):
        calls = []
        steps = [
            PostInstallStep("one", "One", lambda path: calls.append(("one", path))),
            PostInstallStep("two", "Two", lambda path: calls.append(("two", path))),
        ]

        completed = run_post_install(tmp_path, steps, console=quiet_console)

        assert completed == ["one", "two"]
        assert calls == [("one", tmp_path), ("two", tmp_path)]

    def test_stops_at_first_failure(self, tmp_path, quiet_console, no_step_delay):
        calls = []

        def fail(path):
            raise OSError("cannot write .env")

        steps = [
            PostInstallStep("key", "Generating WASF_KEY", fail),
            PostInstallStep("chmod", "Setting permissions", lambda path: calls.append(path)),
        ]

        with pytest.raises(PostInstallError) as excinfo:
            run_post_install(tmp_path, steps, console=quiet_console)

        assert excinfo.value.step.key == "key"
        assert isinstance(excinfo.value.cause, OSError)
        assert calls == []

    def test_posix_only_step_is_silent_elsewhere(self, tmp_path, quiet_console, no_step_delay, monkeypatch):
        monkeypatch.setattr(postinstall, "IS_POSIX", False)
        calls = []
        steps = [
            PostInstallStep("key", "Generating WASF_KEY", lambda path: calls.append("key")),
            PostInstallStep("chmod", "Setting permissions", lambda path: calls.append("chmod"), posix_only=True),
        ]

        completed = run_post_install(tmp_path, steps, console=quiet_console)

        assert completed == ["key"]
        assert calls == ["key"]
        assert "Setting permissions" not in quiet_console.file.getvalue()

    def test_default_steps(self):
        steps = default_steps()

        assert [step.key for step in steps] == ["key", "chmod"]
        assert [step.posix_only for step in steps] == [False, True]
