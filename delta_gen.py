#!/usr/bin/env python3
"""
Delta tool for block checksum deltas.

Usage:
    python delta_gen.py --chunk-size 512 encode old.bin new.bin new.delta
    python delta_gen.py decode old.bin new.delta rebuilt.bin --sha256 <hex>
    python delta_gen.py info new.delta
    python delta_gen.py diff old.bin new.bin

ORIGINAL and TARGET may also be http(s) URLs. Defaults come from an
optional JSON, YAML or TOML config file (--config).
"""

import argparse
import hashlib
import json
import sys

import requests

from blockdelta import CopyRef, DeltaError, find_differing_chunks, generate_instructions
from deltafile import (
    DEFAULT_CHUNK_SIZE,
    apply_delta,
    encode_instructions,
    header_size,
    read_delta,
)

try:  # CPython 3.11
    import tomllib  # type: ignore
except Exception:  # earlier CPython
    tomllib = None

DEFAULT_CONFIG = {
    "chunk_size": DEFAULT_CHUNK_SIZE,
    "min_savings": 0.3,
    "timeout": 30,
    "debug": False,
}

READ_CHUNK = 64 * 1024


def _splitext(p: str):
    i = p.rfind(".")
    return (p[:i], p[i:]) if i != -1 else (p, "")


def _debug(cfg, *args):
    if cfg.get("debug"):
        print("[blockdelta]", *args)


def _info(cfg, *args):
    print(*args)


def _validate_config(cfg):
    chunk_size = cfg.get("chunk_size")
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
        raise ValueError("'chunk_size' must be a positive integer, got {!r}".format(chunk_size))
    min_savings = cfg.get("min_savings")
    if isinstance(min_savings, bool) or not isinstance(min_savings, (int, float)) \
            or not 0 <= min_savings < 1:
        raise ValueError("'min_savings' must be a number in [0, 1), got {!r}".format(min_savings))
    timeout = cfg.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError("'timeout' must be a positive number, got {!r}".format(timeout))
    if not isinstance(cfg.get("debug"), bool):
        raise ValueError("'debug' must be true or false, got {!r}".format(cfg.get("debug")))
    return cfg


def load_config(config_path=None):
    """Load configuration from JSON, YAML or TOML based on extension."""
    cfg = dict(DEFAULT_CONFIG)
    if config_path is None:
        return cfg
    try:
        with open(config_path, "r") as f:
            text = f.read()
    except Exception as exc:
        raise RuntimeError("Config file not found: {}".format(config_path)) from exc
    _, ext = _splitext(config_path)
    ext = ext.lower()
    if ext in (".yaml", ".yml"):
        try:
            import yaml
        except Exception as exc:  # pragma: no cover - missing dependency
            raise RuntimeError("PyYAML is required for YAML config files") from exc
        try:
            loaded = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ValueError("Invalid YAML in {}".format(config_path)) from exc
    elif ext == ".toml":
        if tomllib is None:
            raise RuntimeError("TOML config requires CPython 3.11 or tomllib. Use JSON instead.")
        loaded = tomllib.loads(text)
    else:
        loaded = json.loads(text)
    if not isinstance(loaded, dict):
        raise ValueError("{} must contain a mapping".format(config_path))
    cfg.update(loaded)
    return _validate_config(cfg)


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def fetch_url(url: str, timeout=30) -> bytes:
    """Download ``url`` in chunks and return the body."""
    r = requests.get(url, stream=True, timeout=timeout)
    try:
        if r.status_code != 200:
            raise RuntimeError("HTTP {} for {}".format(r.status_code, url))
        body = bytearray()
        for chunk in r.iter_content(chunk_size=READ_CHUNK):
            body.extend(chunk)
        return bytes(body)
    finally:
        r.close()


def read_source(source: str, cfg) -> bytes:
    """Read a local file or, for http(s) URLs, download it."""
    if _is_url(source):
        _debug(cfg, "Fetching", source)
        data = fetch_url(source, timeout=cfg.get("timeout", DEFAULT_CONFIG["timeout"]))
    else:
        with open(source, "rb") as f:
            data = f.read()
    _debug(cfg, "Read {} bytes from {}".format(len(data), source))
    return data


def should_generate_delta(new_size, delta_size, min_savings=DEFAULT_CONFIG["min_savings"]):
    """Decide if delta is worth it based on size savings."""
    if delta_size >= new_size:
        return False
    savings = (new_size - delta_size) / new_size
    return savings >= min_savings


# ----------------------------------------------------------------------
# Commands

def cmd_encode(args, cfg):
    old_data = read_source(args.original, cfg)
    new_data = read_source(args.target, cfg)
    chunk_size = cfg["chunk_size"]

    instructions = generate_instructions(old_data, new_data, chunk_size)
    delta_data = encode_instructions(instructions, chunk_size, len(new_data))
    with open(args.delta, "wb") as f:
        f.write(delta_data)

    copies = sum(1 for ins in instructions if isinstance(ins, CopyRef))
    _debug(cfg, "Instructions: {} copy, {} literal".format(copies, len(instructions) - copies))

    new_size = len(new_data)
    delta_size = len(delta_data)
    if should_generate_delta(new_size, delta_size, cfg["min_savings"]):
        savings = ((new_size - delta_size) / new_size) * 100
        _info(cfg, f"✓ {args.delta}: {new_size} → {delta_size} bytes ({savings:.1f}% savings)")
    else:
        _info(cfg, f"✗ {args.delta}: Delta not beneficial ({delta_size} vs {new_size} bytes)")
    return 0


def cmd_decode(args, cfg):
    if _is_url(args.original):
        raise ValueError("decode needs a local ORIGINAL file")
    result_hash = apply_delta(args.original, args.delta, args.output, expected_hash=args.sha256)
    _info(cfg, "Wrote {} (sha256 {})".format(args.output, result_hash))
    return 0


def cmd_info(args, cfg):
    with open(args.delta, "rb") as f:
        patch = read_delta(f)
    copies = [ins for ins in patch.instructions if isinstance(ins, CopyRef)]
    literals = [ins for ins in patch.instructions if not isinstance(ins, CopyRef)]
    literal_bytes = sum(len(ins.data) for ins in literals)
    info = {
        "chunk_size": patch.chunk_size,
        "target_length": patch.target_length,
        "header_size": header_size(patch.chunk_size, patch.target_length),
        "copy_instructions": len(copies),
        "literal_instructions": len(literals),
        "copied_bytes": patch.target_length - literal_bytes,
        "literal_bytes": literal_bytes,
    }
    _info(cfg, json.dumps(info, indent=2))
    return 0


def cmd_diff(args, cfg):
    old_data = read_source(args.original, cfg)
    new_data = read_source(args.target, cfg)
    differing = find_differing_chunks(old_data, new_data, cfg["chunk_size"])
    _info(cfg, "Differing windows: {}".format(len(differing)))
    for window in differing:
        _debug(cfg, hashlib.sha1(window).hexdigest(), window[:16].hex())
    return 0


COMMANDS = {
    "encode": cmd_encode,
    "decode": cmd_decode,
    "info": cmd_info,
    "diff": cmd_diff,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Create and apply block checksum deltas"
    )
    parser.add_argument("--config", default=None, help="JSON, YAML or TOML config file")
    parser.add_argument("--chunk-size", type=int, default=None, help="Block size for delta algorithm")
    parser.add_argument("--debug", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("encode", help="Create a delta from ORIGINAL to TARGET")
    p.add_argument("original")
    p.add_argument("target")
    p.add_argument("delta")

    p = sub.add_parser("decode", help="Rebuild TARGET from ORIGINAL and DELTA")
    p.add_argument("original")
    p.add_argument("delta")
    p.add_argument("output")
    p.add_argument("--sha256", default=None, help="Expected SHA256 of the output")

    p = sub.add_parser("info", help="Describe a delta file")
    p.add_argument("delta")

    p = sub.add_parser("diff", help="List target windows missing from ORIGINAL")
    p.add_argument("original")
    p.add_argument("target")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args.config)
        if args.chunk_size is not None:
            cfg["chunk_size"] = args.chunk_size
        if args.debug:
            cfg["debug"] = True
        _validate_config(cfg)
        _debug(cfg, "Config:", cfg)
        return COMMANDS[args.command](args, cfg)
    except (DeltaError, ValueError, OSError, RuntimeError) as exc:
        print("Error:", exc, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
