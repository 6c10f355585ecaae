"""Tests for the CLI entry point."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from alertmanager_telegram.__main__ import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    configure_logging,
    create_parser,
    main,
    run_bot,
    run_config_check,
    validate_config,
)
from alertmanager_telegram.config import Settings
from alertmanager_telegram.errors import UpstreamQueryError
from alertmanager_telegram.shutdown import GracefulShutdown

TOKEN = "123456:ABCDEF"


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(
        f"telegram_token: '{TOKEN}'\n"
        "alertmanager_url: http://am:9093\n"
        "users: [alice]\n"
        "time_zone: UTC\n"
    )
    return path


@pytest.fixture(autouse=True)
def clean_env():
    with patch.dict(os.environ, {}, clear=True):
        yield


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, telegram_token=TOKEN, **overrides)


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_defaults(self) -> None:
        args = create_parser().parse_args([])
        assert args.config is None
        assert args.config_check is False
        assert args.log_level is None
        assert args.disable_http is False

    def test_options(self) -> None:
        args = create_parser().parse_args(
            ["-c", "bot.yml", "--config-check", "--log-level", "DEBUG", "--disable-http"]
        )
        assert args.config == "bot.yml"
        assert args.config_check is True
        assert args.log_level == "DEBUG"
        assert args.disable_http is True

    def test_invalid_log_level(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--log-level", "INVALID"])
        assert exc_info.value.code != 0
        assert "invalid choice" in capsys.readouterr().err


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_levels(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_libraries_quieted(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_logfile(self, tmp_path: Path) -> None:
        """Test that records reach the configured log file."""
        logfile = tmp_path / "bot.log"
        configure_logging("INFO", str(logfile))
        logging.getLogger("alertmanager_telegram.test").info("hello file")

        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello file" in logfile.read_text()
        configure_logging("INFO")


class TestValidateConfig:
    """Tests for configuration validation."""

    def test_valid_file(self, config_file: Path) -> None:
        settings = validate_config(str(config_file))
        assert settings is not None
        assert settings.users == ["alice"]

    def test_missing_token(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.yml"
        path.write_text("users: [alice]\n")

        assert validate_config(str(path)) is None
        err = capsys.readouterr().err
        assert "Configuration validation failed" in err
        assert "telegram_token" in err

    def test_missing_file(self, tmp_path: Path, capsys) -> None:
        assert validate_config(str(tmp_path / "absent.yml")) is None
        assert "Cannot read config file" in capsys.readouterr().err


class TestRunConfigCheck:
    """Tests for config check mode."""

    def test_prints_summary(self, capsys) -> None:
        assert run_config_check(make_settings()) == EXIT_SUCCESS

        out = capsys.readouterr().out
        assert "Configuration is valid!" in out
        assert "telegram_token: 123456***" in out
        assert TOKEN not in out

    def test_missing_template(self, tmp_path: Path, capsys) -> None:
        settings = make_settings(silences_template_path=str(tmp_path / "absent.j2"))

        assert run_config_check(settings) == EXIT_CONFIG_ERROR
        assert "Template not found" in capsys.readouterr().err


class TestRunBot:
    """Tests for run_bot."""

    @pytest.fixture
    def bot(self) -> MagicMock:
        bot = MagicMock()
        bot.start = AsyncMock()
        bot.stop = AsyncMock()
        return bot

    async def test_runs_until_shutdown(self, bot: MagicMock) -> None:
        """Test that the bot is stopped once shutdown is requested."""
        with (
            patch("alertmanager_telegram.__main__.Bot", return_value=bot) as bot_cls,
            patch.object(GracefulShutdown, "wait", new=AsyncMock()),
        ):
            assert await run_bot(make_settings(), disable_http=True) == EXIT_SUCCESS

        assert bot_cls.call_args.kwargs["disable_http"] is True
        bot.start.assert_awaited_once()
        bot.stop.assert_awaited_once()

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (UpstreamQueryError("connection refused"), EXIT_ERROR),
            (RuntimeError("boom"), EXIT_ERROR),
            (KeyboardInterrupt(), EXIT_INTERRUPTED),
        ],
    )
    async def test_start_failures(self, bot: MagicMock, error: BaseException, code: int) -> None:
        bot.start.side_effect = error
        with patch("alertmanager_telegram.__main__.Bot", return_value=bot):
            assert await run_bot(make_settings()) == code
        bot.stop.assert_awaited_once()


class TestMain:
    """Tests for main entry point."""

    def test_config_check(self, config_file: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(config_file), "--config-check"])
        assert exc_info.value.code == EXIT_SUCCESS

    def test_config_path_from_env(self, config_file: Path) -> None:
        with patch.dict(os.environ, {"CONFIG_PATH": str(config_file)}):
            with pytest.raises(SystemExit) as exc_info:
                main(["--config-check"])
        assert exc_info.value.code == EXIT_SUCCESS

    def test_invalid_config(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == EXIT_CONFIG_ERROR

    def test_runs_bot(self, config_file: Path) -> None:
        """Main should run the bot when not in config-check mode."""
        with (
            patch("alertmanager_telegram.__main__.run_bot", new=MagicMock()) as mock_run_bot,
            patch(
                "alertmanager_telegram.__main__.asyncio.run", return_value=EXIT_ERROR
            ) as mock_asyncio_run,
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["-c", str(config_file), "--disable-http"])

        assert exc_info.value.code == EXIT_ERROR
        mock_asyncio_run.assert_called_once()
        assert mock_run_bot.call_args.kwargs["disable_http"] is True
