"""
Per-game configuration for the mod library.

Each game lives in its own directory under the games directory and keeps a
camelCase ``Config.json`` that the front end also reads and writes:

    <games_dir>/
    └── Genshin/
        └── Config.json

    {
        "basic": {"gamePreset": "GIMI", "backgroundType": "image"},
        "threeDMigoto": {
            "installDir": "D:/XXMI/GIMI",
            "targetExePath": "D:/Genshin Impact/GenshinImpact.exe",
            "launcherExePath": "",
            "launchArgs": "",
            "useShell": false,
            "showErrorPopup": true,
            "delay": 100,
            "autoExitSeconds": 5,
            "extraDll": ""
        },
        "other": {}
    }

Keys this module does not know about are kept, so a load/save round trip
never drops front-end settings.  The mods root is ``<installDir>/Mods``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from errors import ConfigError, ModIOError, NotFoundError

CONFIG_FILENAME = "Config.json"
MODS_DIR_NAME = "Mods"

_log = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class BasicSettings(_CamelModel):
    game_preset: str = "Default"
    background_type: str = "image"


class MigotoSettings(_CamelModel):
    """The ``threeDMigoto`` block: where the loader lives and how it launches."""

    install_dir: str | None = None
    target_exe_path: str | None = None
    launcher_exe_path: str | None = None
    launch_args: str | None = None
    use_shell: bool = False
    show_error_popup: bool = False
    auto_set_analyse_options: bool = False
    delay: int | None = Field(default=None, ge=0)
    extra_dll: str | None = None
    auto_exit_seconds: int | None = Field(default=None, ge=0)
    use_upx: bool = False

    @field_validator(
        "install_dir", "target_exe_path", "launcher_exe_path", "launch_args", "extra_dll"
    )
    @classmethod
    def _blank_is_unset(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class GameConfig(_CamelModel):
    basic: BasicSettings = Field(default_factory=BasicSettings)
    three_d_migoto: MigotoSettings = Field(default_factory=MigotoSettings)
    other: dict[str, Any] = Field(default_factory=dict)

    @field_validator("three_d_migoto", mode="before")
    @classmethod
    def _null_migoto(cls, v: Any) -> Any:
        # Older configs store `"threeDMigoto": null`
        return {} if v is None else v


def game_config_path(games_dir: str | Path, game_name: str) -> Path:
    return Path(games_dir) / game_name / CONFIG_FILENAME


def parse_game_config(data: bytes | str) -> GameConfig:
    """Parse raw JSON into a GameConfig.

    Raises ``ConfigError`` for invalid JSON or schema violations.
    """
    try:
        return GameConfig.model_validate(json.loads(data))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config is not valid JSON: {exc}") from exc
    except ValidationError as exc:
        raise ConfigError(f"Invalid game config: {exc}") from exc


def load_game_config(path: str | Path) -> GameConfig:
    """Load ``path``; a missing file yields the defaults."""
    path = Path(path)
    if not path.exists():
        _log.info("No config at %s, using defaults", path)
        return GameConfig()
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ModIOError(f"Failed to read config {path}: {exc}") from exc
    return parse_game_config(data)


def save_game_config(path: str | Path, config: GameConfig):
    path = Path(path)
    text = json.dumps(
        config.model_dump(by_alias=True, mode="json"), indent=2, ensure_ascii=False
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ModIOError(f"Failed to write config {path}: {exc}") from exc


def resolve_mods_dir(config: GameConfig) -> Path:
    install_dir = config.three_d_migoto.install_dir
    if not install_dir:
        raise NotFoundError("3DMigoto install directory is not configured")
    return Path(install_dir) / MODS_DIR_NAME
