"""Command line entry point for inspecting and editing managed documents."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .documents.errors import FileError
from .documents.manager import FileManager, FileManagerConfig
from .documents.models import Doc, DocDescription
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def configure_logging(
    debug: bool = False,
    *,
    log_dir: Path | str | None = None,
    force: bool = False,
) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, log_dir=log_dir, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_manager(settings: Settings) -> FileManager:
    return FileManager(FileManagerConfig.from_settings(settings))


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Entry point invoked by the ``filekeeper`` console script."""

    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=stderr)
        return 2

    settings_path = args.settings_path or os.environ.get("FILEKEEPER_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    settings = load_settings(resolved_path, store=store, overrides=cli_overrides or None)

    debug = _env_flag("FILEKEEPER_DEBUG", default=False) or settings.debug_logging
    configure_logging(debug, log_dir=settings.log_dir)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides, stream=stdout)
        return 0
    if args.command is None:
        parser.print_usage(stderr)
        return 2

    manager = build_manager(settings)
    target = Path(args.path).expanduser() if getattr(args, "path", None) else manager.make_file_path(args.file_id)
    try:
        if args.command == "path":
            print(target, file=stdout)
        elif args.command == "open":
            text = manager.open(target, args.file_id)
            if args.json:
                description = DocDescription(id=args.file_id, name=target.name, path=str(target))
                print(Doc(desc=description, content=text).to_json(), file=stdout)
            else:
                stdout.write(text)
        elif args.command == "save":
            manager.save(target, stdin.read(), args.file_id)
            _LOGGER.info("Saved %s to %s", args.file_id, target)
    except FileError as exc:
        _LOGGER.error("%s failed: %s", args.command, exc)
        print(str(exc), file=stderr)
        return 1
    return 0


def run() -> None:
    raise SystemExit(main())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filekeeper",
        description="Open, save and locate documents kept under the configured document root.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.filekeeper/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    commands = parser.add_subparsers(dest="command")

    path_cmd = commands.add_parser("path", help="Print the canonical location of a document.")
    path_cmd.add_argument("file_id", metavar="ID")

    open_cmd = commands.add_parser("open", help="Print a document's text.")
    open_cmd.add_argument("file_id", metavar="ID")
    open_cmd.add_argument("--path", help="Read this file instead of the canonical location.")
    open_cmd.add_argument("--json", action="store_true", help="Emit a JSON document payload.")

    save_cmd = commands.add_parser("save", help="Save standard input as a document.")
    save_cmd.add_argument("file_id", metavar="ID")
    save_cmd.add_argument("--path", help="Write to this file instead of the canonical location.")
    return parser


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, str), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = annotation
    if get_origin(annotation) is not None:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if raw_value.lower() in {"none", "null"}:
            return None
        target = args[0] if args else str
    if target is bool:
        return _parse_bool(raw_value)
    return raw_value


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO,
) -> None:
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(
            name for name in os.environ if name.startswith("FILEKEEPER_")
        ),
    }
    json.dump({"settings": asdict(settings), "meta": metadata}, stream, indent=2)
    stream.write("\n")


if __name__ == "__main__":  # pragma: no cover
    run()
