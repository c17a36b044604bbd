"""
Projects the game's launch settings into 3DMigoto's ``d3dx.ini``.

Only the keys listed in ``apply_launch_settings`` are touched; the rest of
the file is preserved by ``IniDocument``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from errors import NotFoundError
from game_config import MigotoSettings
from ini_patcher import IniDocument

_log = logging.getLogger(__name__)

D3DX_INI = "d3dx.ini"
D3D11_DLL = "d3d11.dll"

ANALYSE_OPTIONS = (
    "deferred_ctx_immediate dump_rt dump_cb dump_vb dump_ib buf txt dds dump_tex dds"
)
ANALYSE_OPTIONS_SYMLINK = ANALYSE_OPTIONS + " symlink"
HUNTING_MODE = "2"
MARKING_ACTIONS = "clipboard asm hlsl"


def is_migoto_installed(migoto_dir: str | Path) -> bool:
    migoto_dir = Path(migoto_dir)
    return (migoto_dir / D3D11_DLL).exists() and (migoto_dir / D3DX_INI).exists()


def _set_or_remove(ini: IniDocument, section: str, key: str, value: str | None):
    if value:
        ini.upsert(section, key, value)
    else:
        ini.remove(section, key)


def apply_launch_settings(ini: IniDocument, settings: MigotoSettings):
    if settings.target_exe_path:
        ini.upsert("Loader", "target", settings.target_exe_path)

    if settings.use_shell:
        # Launched through the shell: the loader must not start anything itself
        ini.remove("Loader", "launch")
        ini.remove("Loader", "launch_args")
    else:
        _set_or_remove(ini, "Loader", "launch", settings.launcher_exe_path)
        _set_or_remove(ini, "Loader", "launch_args", settings.launch_args)

    ini.upsert("Logging", "show_warnings", "1" if settings.show_error_popup else "0")

    if settings.auto_set_analyse_options:
        ini.upsert("Hunting", "analyse_options", ANALYSE_OPTIONS)

    if settings.delay is not None:
        ini.upsert("System", "dll_initialization_delay", str(settings.delay))

    ini.upsert("Hunting", "hunting", HUNTING_MODE)
    ini.upsert("Hunting", "marking_actions", MARKING_ACTIONS)

    if settings.auto_exit_seconds is not None:
        ini.upsert("Loader", "delay", str(settings.auto_exit_seconds))

    _set_or_remove(ini, "Loader", "inject_dll", settings.extra_dll)


def _d3dx_path(migoto_dir: str | Path) -> Path:
    path = Path(migoto_dir) / D3DX_INI
    if not path.exists():
        raise NotFoundError(f"{D3DX_INI} not found at {path}")
    return path


def patch_d3dx_ini(migoto_dir: str | Path, settings: MigotoSettings) -> Path:
    path = _d3dx_path(migoto_dir)
    with IniDocument.edit(path) as ini:
        apply_launch_settings(ini, settings)
    _log.info("Applied launch settings to %s", path)
    return path


def set_symlink_dumping(migoto_dir: str | Path, enable: bool) -> Path:
    path = _d3dx_path(migoto_dir)
    with IniDocument.edit(path) as ini:
        ini.upsert(
            "Hunting", "analyse_options", ANALYSE_OPTIONS_SYMLINK if enable else ANALYSE_OPTIONS
        )
    _log.info("Symlink dumping %s in %s", "enabled" if enable else "disabled", path)
    return path
