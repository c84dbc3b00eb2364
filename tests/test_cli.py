import os
from unittest.mock import AsyncMock, patch

from fleet_backup import cli


def test_parse_args_full():
    args = cli.parse_args(
        ["--s", "my.geotab.com", "--d", "fleet", "--u", "me", "--p", "pw", "--f", "/out", "--c"]
    )
    assert args.server == "my.geotab.com"
    assert args.database == "fleet"
    assert args.user == "me"
    assert args.password == "pw"
    assert args.folder == "/out"
    assert args.continuous is True


def test_parse_args_case_insensitive_and_default_folder():
    args = cli.parse_args(["--S", "srv", "--D", "Fleet", "--U", "Me", "--P", "PW"])
    assert args.database == "Fleet"
    assert args.password == "PW"
    assert args.folder == os.getcwd()
    assert args.continuous is False


def test_parse_args_values_starting_with_dash():
    args = cli.parse_args(["--s", "srv", "--d", "fleet", "--u", "me", "--p", "-Secret1"])
    assert args.password == "-Secret1"


def test_parse_args_trailing_folder_flag_defaults_to_cwd():
    args = cli.parse_args(["--s", "srv", "--d", "fleet", "--u", "me", "--p", "pw", "--f"])
    assert args.folder == os.getcwd()


def test_parse_args_missing_required():
    assert cli.parse_args(["--s", "srv", "--u", "me"]) is None


def test_main_prints_usage_and_waits(capsys):
    with patch("builtins.input", return_value="") as wait:
        code = cli.main(["--s", "srv"])
    assert code == 1
    wait.assert_called_once()
    assert "--f  The folder" in capsys.readouterr().out


def test_main_runs_backup(capsys, tmp_path):
    with patch("fleet_backup.cli.run_backup", new_callable=AsyncMock) as run:
        code = cli.main(
            ["--s", "srv", "--d", "fleet", "--u", "me", "--p", "pw", "--f", str(tmp_path)]
        )
    assert code == 0
    args = run.await_args.args[0]
    assert args.folder == str(tmp_path)
    assert "Finished receiving data from srv/fleet" in capsys.readouterr().out


async def test_run_backup_one_shot(tmp_path):
    args = cli.parse_args(
        ["--s", "srv", "--d", "fleet", "--u", "me", "--p", "pw", "--f", str(tmp_path)]
    )
    with (
        patch("fleet_backup.cli.GeotabClient") as client_cls,
        patch("fleet_backup.cli.BackupWorker") as worker_cls,
    ):
        client_cls.return_value.__aenter__ = AsyncMock(return_value="source")
        client_cls.return_value.__aexit__ = AsyncMock(return_value=None)
        worker_cls.return_value.run = AsyncMock()

        await cli.run_backup(args, cli.Settings())

    client_cls.assert_called_once()
    assert client_cls.call_args.args == ("me", "pw", "fleet", "srv")
    config = worker_cls.call_args.args[1]
    assert config.output_dir == str(tmp_path)
    assert config.continuous is False
    worker_cls.return_value.run.assert_awaited_once_with(continuous=False)
