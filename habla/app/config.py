from __future__ import annotations

import argparse
import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

APP_NAME = "habla"

DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "device": None,
    "wav": None,
    "realtime": None,
    "direction": "es-en",
    "backend": "remote",
    "api_key": None,
    "remote_endpoint": "https://api.openai.com/v1/audio/transcriptions",
    "remote_model": "whisper-1",
    "remote_timeout_s": 30.0,
    "retry_attempts": 3,
    "retry_backoff_s": 0.5,
    "local_model": "base",
    "local_device": "cpu",
    "local_compute_type": "int8",
    "translator": "llama",
    "model_path": "models/gemma-2b-it.Q4_K_M.gguf",
    "context_size": 2048,
    "max_output_tokens": 256,
    "temperature": 0.1,
    "engine_queue_depth": 2,
    "telemetry": True,
    "telemetry_interval_s": 1.0,
    "telemetry_capacity": 300,
    "max_capture_sec": 300.0,
    "ui": False,
    "host": "127.0.0.1",
    "port": 8080,
    "verbose": False,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())
# never written to the user config file
_SECRET_KEYS = frozenset({"api_key"})


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir(APP_NAME, APP_NAME))
    return AppPaths(config_dir=config_dir, config_path=config_dir / "config.json")


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in CONFIG_KEYS:
        if key in payload:
            out[key] = payload[key]
    return out


def load_default_config() -> dict[str, Any]:
    out = copy.deepcopy(DEFAULTS)
    env_model = os.getenv("HABLA_MODEL_PATH")
    if env_model:
        out["model_path"] = env_model
    return out


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    payload = {k: v for k, v in (defaults or load_default_config()).items() if k not in _SECRET_KEYS}
    _write_json_dict(paths.config_path, payload)
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    loaded = _known_only(_load_json_dict(chosen))
    merged = dict(defaults)
    merged.update(loaded)
    return merged, chosen


def save_user_config(values: dict[str, Any], config_path: str | None = None) -> Path:
    payload = {k: v for k, v in _known_only(values).items() if k not in _SECRET_KEYS}
    if config_path:
        path = Path(config_path)
        existing = _known_only(_load_json_dict(path)) if path.exists() else {}
    else:
        path = ensure_user_config_exists()
        existing = _known_only(_load_json_dict(path))
    merged = dict(load_default_config())
    merged.update(existing)
    merged.update(payload)
    _write_json_dict(path, {k: v for k, v in _known_only(merged).items() if k not in _SECRET_KEYS})
    return path


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="habla",
        description="Speech translator (Whisper transcription + Gemma translation) with live resource telemetry",
    )
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")

    src = p.add_mutually_exclusive_group()
    src.add_argument("--wav", default=defaults["wav"], help="path to a mono 16 kHz WAV file")
    src.add_argument("--realtime", type=float, default=defaults["realtime"], help="record from the mic for N seconds")

    p.add_argument("--direction", default=defaults["direction"], help="es-en or en-es")
    p.add_argument(
        "--backend",
        default=defaults["backend"],
        choices=["remote", "local"],
        help="speech recognition: OpenAI Whisper API or local faster-whisper",
    )
    p.add_argument("--local", dest="backend", action="store_const", const="local", help="shorthand for --backend local")
    p.add_argument("--api-key", default=defaults["api_key"], help="OpenAI API key (or set OPENAI_API_KEY)")
    p.add_argument("--remote-endpoint", default=defaults["remote_endpoint"], help="transcription endpoint URL")
    p.add_argument("--remote-model", default=defaults["remote_model"], help="remote transcription model")
    p.add_argument("--remote-timeout-s", type=float, default=defaults["remote_timeout_s"], help="per-attempt timeout")
    p.add_argument("--retry-attempts", type=int, default=defaults["retry_attempts"], help="remote attempts cap")
    p.add_argument("--retry-backoff-s", type=float, default=defaults["retry_backoff_s"], help="first retry delay")
    p.add_argument("--local-model", default=defaults["local_model"], help="faster-whisper model size or directory")
    p.add_argument("--local-device", default=defaults["local_device"], help="faster-whisper device")
    p.add_argument("--local-compute-type", default=defaults["local_compute_type"], help="faster-whisper compute type")

    p.add_argument("--translator", default=defaults["translator"], choices=["llama", "phrasebook"], help="translation engine")
    p.add_argument("--gemma-model", "--model-path", dest="model_path", default=defaults["model_path"], help="GGUF model path")
    p.add_argument("--gemma-ctx", "--context-size", dest="context_size", type=int, default=defaults["context_size"], help="context tokens")
    p.add_argument("--max-output-tokens", type=int, default=defaults["max_output_tokens"], help="generation cap")
    p.add_argument("--temperature", type=float, default=defaults["temperature"], help="sampling temperature")
    p.add_argument("--engine-queue-depth", type=int, default=defaults["engine_queue_depth"], help="waiting translate calls")

    p.add_argument(
        "--telemetry",
        action=argparse.BooleanOptionalAction,
        default=defaults["telemetry"],
        help="sample process CPU/memory in the background",
    )
    p.add_argument("--telemetry-interval-s", type=float, default=defaults["telemetry_interval_s"], help="sampling interval")
    p.add_argument("--telemetry-capacity", type=int, default=defaults["telemetry_capacity"], help="samples kept")
    p.add_argument("--max-capture-sec", type=float, default=defaults["max_capture_sec"], help="longest allowed recording")

    p.add_argument("--ui", action="store_true", default=defaults["ui"], help="run the local web UI")
    p.add_argument("--host", default=defaults["host"], help="UI bind address")
    p.add_argument("--port", type=int, default=defaults["port"], help="UI port")
    p.add_argument("--verbose", action="store_true", default=defaults["verbose"], help="debug logs on the console")
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    if defaults.get("list_devices"):
        args.list_devices = True
    if not args.api_key:
        args.api_key = os.getenv("OPENAI_API_KEY")
    return args
