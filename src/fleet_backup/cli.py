"""Command-line entry point: back up a MyGeotab database to per-vehicle CSV files."""

import argparse
import asyncio
import logging
import os
import sys

from fleet_backup.client import GeotabClient
from fleet_backup.collector import BackupWorker
from fleet_backup.config import Settings, build_worker_config
from fleet_backup.exceptions import ConfigError

COMMAND = "> fleet-backup --s {0} --d {1} --u {2} --p {3} --f {4} --c"

USAGE = "\n".join(
    [
        "Usage:\n",
        COMMAND.format("server", "database", "user", "password", "file path"),
        "--s  The Server",
        "--d  The Database",
        "--u  The User",
        "--p  The Password",
        "--f  The folder to save any output files to, if applicable. "
        "Defaults to the current directory.",
        "--c  Run the feed continuously.",
    ]
)


def _flag_value(argv: list[str], lowered: list[str], flag: str) -> str | None:
    """The argument right after ``flag``, taken as-is even if it starts with '-'."""
    try:
        index = lowered.index(flag)
    except ValueError:
        return None
    if index + 1 >= len(argv):
        return None
    return argv[index + 1]


def parse_args(argv: list[str]) -> argparse.Namespace | None:
    """Parse flags case-insensitively. None when a required flag is missing.

    Values are read by position, so passwords like ``-Secret1`` work. A
    missing ``--f`` value falls back to the current directory.
    """
    lowered = [a.lower() for a in argv]
    args = argparse.Namespace(
        server=_flag_value(argv, lowered, "--s"),
        database=_flag_value(argv, lowered, "--d"),
        user=_flag_value(argv, lowered, "--u"),
        password=_flag_value(argv, lowered, "--p"),
        folder=_flag_value(argv, lowered, "--f") or os.getcwd(),
        continuous="--c" in lowered,
    )
    if not all((args.server, args.database, args.user, args.password)):
        return None
    return args


def usage() -> int:
    print(USAGE)
    try:
        input()
    except EOFError:
        pass
    return 1


async def _wait_for_enter() -> None:
    try:
        await asyncio.to_thread(input)
    except EOFError:
        # No terminal attached; run until cancelled.
        await asyncio.Event().wait()


async def run_backup(args: argparse.Namespace, settings: Settings) -> None:
    config = build_worker_config(
        settings, output_dir=args.folder, continuous=args.continuous
    )
    async with GeotabClient(
        args.user,
        args.password,
        args.database,
        args.server,
        results_limit=settings.feed_results_limit,
    ) as client:
        worker = BackupWorker(client, config)
        if not args.continuous:
            await worker.run(continuous=False)
            return

        task = asyncio.create_task(worker.run(continuous=True))
        waiter = asyncio.create_task(_wait_for_enter())
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if waiter in done:
            print("Stopping after the current cycle...")
            worker.request_stop()
        else:
            waiter.cancel()
        await task


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args is None:
        return usage()

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )

    try:
        asyncio.run(run_backup(args, settings))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        pass

    print()
    print("******************************************************")
    print(f"Finished receiving data from {args.server}/{args.database}")
    print("******************************************************")
    return 0


if __name__ == "__main__":
    sys.exit(main())
