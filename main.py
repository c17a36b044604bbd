#!/usr/bin/env python3
"""3DMigoto Mod Library: command-line entry point"""

from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import os
import sys
import threading
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path

from errors import ModLibraryError
from game_config import game_config_path, load_game_config
from ini_patcher import IniDocument
from migoto_ini import patch_d3dx_ini
from mod_catalog import ROOT_GROUP
from mod_manager import ModManager
from smart_extract import preview_archive

APP_LOGGER = "modlibrary"
LOG_DIR_ENV = "MODLIB_LOG_DIR"
CRASH_LOG_NAME = "modlibrary-crash.log"

_installed_handlers: list[logging.Handler] = []
_crash_stream = None


def default_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override)
    return Path(os.environ.get("APPDATA", "~")).expanduser() / "ModLibrary"


def setup_logging(
    log_dir: Path | None = None, verbose: bool = False
) -> tuple[logging.Logger, Path]:
    log_dir = log_dir or default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "modlibrary.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    # Library modules log under their own module names; collect them all
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for old in _installed_handlers:
        root.removeHandler(old)
        old.close()
    _installed_handlers[:] = [handler, console]
    for new in _installed_handlers:
        root.addHandler(new)

    logger = logging.getLogger(APP_LOGGER)
    return logger, log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path) -> Path:
    """Send uncaught exceptions to ``logger`` and native crashes to the crash log.

    Covers the main thread (``sys.excepthook``) and worker threads such as
    the watch observer (``threading.excepthook``).  Returns the crash log path.
    """
    global _crash_stream

    def log_uncaught(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Uncaught %s, exiting", exc_type.__name__, exc_info=(exc_type, exc_value, exc_tb)
        )

    def log_thread_uncaught(args: threading.ExceptHookArgs):
        if issubclass(args.exc_type, SystemExit):
            return
        name = args.thread.name if args.thread is not None else "?"
        logger.critical(
            "Uncaught %s in thread %s",
            args.exc_type.__name__,
            name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = log_uncaught
    threading.excepthook = log_thread_uncaught

    # faulthandler needs a raw file that stays open for the life of the process
    crash_log = log_dir / CRASH_LOG_NAME
    if _crash_stream is not None:
        faulthandler.disable()
        _crash_stream.close()
    _crash_stream = open(crash_log, "a", encoding="utf-8")
    faulthandler.enable(_crash_stream, all_threads=True)
    return crash_log


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="3DMigoto Mod Library")
    parser.add_argument("--mods-dir", help="Mods root (overrides --games-dir/--game)")
    parser.add_argument("--games-dir", help="Directory holding <Game>/Config.json")
    parser.add_argument("--game", help="Game name under --games-dir")
    parser.add_argument("--log-dir", help="Where to write modlibrary.log")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="List mods and groups")
    scan.add_argument("--json", action="store_true", help="Print the catalog as JSON")

    toggle = sub.add_parser("toggle", help="Enable or disable a mod")
    toggle.add_argument("mod_id")
    state = toggle.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", dest="enable", action="store_true")
    state.add_argument("--disable", dest="enable", action="store_false")

    group = sub.add_parser("group", help="Create, rename or delete groups")
    group_sub = group.add_subparsers(dest="group_command", required=True)
    g_create = group_sub.add_parser("create")
    g_create.add_argument("name")
    g_rename = group_sub.add_parser("rename")
    g_rename.add_argument("old")
    g_rename.add_argument("new")
    g_delete = group_sub.add_parser("delete")
    g_delete.add_argument("name")
    g_delete.add_argument(
        "--permanent", action="store_true", help="Skip the recycle bin"
    )

    move = sub.add_parser("move", help="Move a mod into another group")
    move.add_argument("mod_id")
    move.add_argument("group", help=f"Target group ('{ROOT_GROUP}' means the default group)")

    preview = sub.add_parser("preview", help="Summarize an archive without extracting")
    preview.add_argument("archive")

    install = sub.add_parser("install", help="Install a .zip/.7z/.rar archive")
    install.add_argument("archive")
    install.add_argument("name", help="Folder name for the installed mod")
    install.add_argument("--group", default=ROOT_GROUP)

    ini = sub.add_parser("ini", help="Patch a [section] key = value file")
    ini_sub = ini.add_subparsers(dest="ini_command", required=True)
    ini_set = ini_sub.add_parser("set")
    ini_set.add_argument("file")
    ini_set.add_argument("section")
    ini_set.add_argument("key")
    ini_set.add_argument("value")
    ini_remove = ini_sub.add_parser("remove")
    ini_remove.add_argument("file")
    ini_remove.add_argument("section")
    ini_remove.add_argument("key")

    sub.add_parser("apply-launch", help="Write the game's launch settings into d3dx.ini")
    return parser


def _manager(args: argparse.Namespace) -> ModManager:
    if args.mods_dir:
        return ModManager(args.mods_dir)
    if args.games_dir and args.game:
        return ModManager.for_game(args.games_dir, args.game)
    raise SystemExit("error: pass --mods-dir, or --games-dir together with --game")


def _print_catalog(manager: ModManager, as_json: bool):
    result = manager.scan()
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return
    for group in [ROOT_GROUP, *result.groups]:
        mods = result.mods_in_group(group)
        if group == ROOT_GROUP and not mods:
            continue
        print(f"[{group}]")
        for mod in mods:
            mark = "x" if mod.enabled else " "
            print(f"  [{mark}] {mod.name}  ({mod.id})")


def run(args: argparse.Namespace) -> int:
    if args.command == "ini":
        with IniDocument.edit(args.file) as doc:
            if args.ini_command == "set":
                doc.upsert(args.section, args.key, args.value)
            else:
                doc.remove(args.section, args.key)
        return 0

    if args.command == "apply-launch":
        if not (args.games_dir and args.game):
            raise SystemExit("error: apply-launch needs --games-dir and --game")
        config = load_game_config(game_config_path(args.games_dir, args.game))
        settings = config.three_d_migoto
        if not settings.install_dir:
            raise SystemExit("error: threeDMigoto.installDir is not configured")
        print(patch_d3dx_ini(settings.install_dir, settings))
        return 0

    if args.command == "preview":
        print(json.dumps(asdict(preview_archive(args.archive)), indent=2, ensure_ascii=False))
        return 0

    with _manager(args) as manager:
        if args.command == "scan":
            _print_catalog(manager, args.json)
        elif args.command == "toggle":
            print(manager.toggle_mod(args.mod_id, args.enable))
        elif args.command == "group":
            if args.group_command == "create":
                manager.create_group(args.name)
            elif args.group_command == "rename":
                manager.rename_group(args.old, args.new)
            else:
                manager.delete_group(args.name, use_trash=not args.permanent)
        elif args.command == "move":
            print(manager.move_mod(args.mod_id, args.group))
        elif args.command == "install":
            print(manager.install_archive(args.archive, args.name, args.group))
        else:
            raise SystemExit(f"Unhandled command: {args.command}")
    return 0


def main(argv: list[str] | None = None, crash_handler: bool = False) -> int:
    args = build_parser().parse_args(argv)
    logger, log_dir = setup_logging(
        Path(args.log_dir) if args.log_dir else None, verbose=args.verbose
    )
    if crash_handler:
        install_crash_handler(logger, log_dir)
    logger.info("Running command %s", args.command)
    try:
        return run(args)
    except ModLibraryError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(crash_handler=True))
