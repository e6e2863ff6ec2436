# mbdist/modules/config.py
# -*- coding: utf-8 -*-
"""
mbdist central configuration loader

Features:
- Read YAML/JSON config from multiple locations (env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types
- Validate structure and types, warn or error (fatal optional)
- Provide typed access via Config dataclass (get_config(), get_conf(), get_program())
- Thread-safe load/reload, override-only save
"""

from __future__ import annotations
import os
import json
import shutil
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple

import yaml

# logger (the mbdist logging module depends on us, so plain stdlib logger here)
logger = logging.getLogger("mbdist.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "max_size": "10M",  # human readable
        "backups": 5,
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.mbdist/transparency.jsonl", "fsync": False},
    },
    # named settings read by the dist phases
    "conf": {
        "force": False,
        "verbose": False,
        "buildflags": "",
        "skiptest": False,
        "cpantest": False,
        "prereqs": "follow",  # follow | ignore | fail
    },
    # external programs; None means "look it up on PATH" (sudo is never looked up)
    "programs": {
        "perl": None,
        "sudo": None,
    },
    "driver": {
        "min_version": "0.2611",
        "scrub_env": ["PERL5OPT"],
        "timeout": 3600,
    },
    "reports": {
        "dir": "~/.mbdist/reports",
    },
    # module index for the local host: "Foo::Bar": {path, package, version}
    "index": {},
}

_PREREQ_POLICIES = ("follow", "ignore", "fail")

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def get_conf(self, name: str, default: Any = None) -> Any:
        return self.get(f"conf.{name}", default)

    def get_program(self, name: str) -> Optional[str]:
        """Configured path of an external program. Only perl falls back to PATH."""
        val = self.get(f"programs.{name}")
        if val:
            return str(val)
        if name == "perl":
            return shutil.which("perl")
        return None

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_CONFIG_PATH: Optional[Path] = None

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("MBDIST_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "mbdist.yaml",
        Path.cwd() / "mbdist.yml",
        Path.cwd() / "mbdist.json",
        Path.home() / ".config" / "mbdist" / "config.yaml",
        Path("/etc") / "mbdist" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("config: failed reading %s: %s", path, e)
        return None

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(txt)
        except yaml.YAMLError as e:
            logger.error("config: yaml parse fail %s: %s", path, e)
            return None
    else:
        try:
            data = json.loads(txt)
        except ValueError as e:
            logger.error("config: json parse fail %s: %s", path, e)
            return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error("config: %s does not contain a mapping", path)
        return None
    return data

def _as_bool(val: Any) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in ("1", "yes", "true", "on")
    return bool(val)

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    path_keys = [
        ("logging", "file"),
        ("reports", "dir"),
        ("programs", "perl"),
        ("programs", "sudo"),
    ]
    for section, key in path_keys:
        ref = out.get(section)
        if isinstance(ref, dict) and isinstance(ref.get(key), str) and ref[key]:
            # bare program names stay as-is so they resolve through PATH
            if section == "programs" and os.sep not in ref[key]:
                continue
            ref[key] = _expand_path(ref[key])

    jsonl = out.get("logging", {}).get("jsonl")
    if isinstance(jsonl, dict) and isinstance(jsonl.get("path"), str):
        jsonl["path"] = _expand_path(jsonl["path"])

    conf = out.get("conf")
    if isinstance(conf, dict):
        for key in ("force", "verbose", "skiptest", "cpantest"):
            if key in conf:
                conf[key] = _as_bool(conf[key])
        if conf.get("buildflags") is None:
            conf["buildflags"] = ""
        if isinstance(conf.get("prereqs"), str):
            conf["prereqs"] = conf["prereqs"].strip().lower()

    driver = out.get("driver")
    if isinstance(driver, dict):
        try:
            driver["timeout"] = int(driver.get("timeout") or 0) or None
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce driver.timeout", exc_info=True)
            driver["timeout"] = None
        if driver.get("min_version") is not None:
            driver["min_version"] = str(driver["min_version"])
        if isinstance(driver.get("scrub_env"), str):
            driver["scrub_env"] = driver["scrub_env"].split()

    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless called with fatal=True in load."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    conf = cfg.get("conf", {})
    if not isinstance(conf, dict):
        issues.append("conf must be a mapping")
    else:
        if conf.get("prereqs") not in _PREREQ_POLICIES:
            issues.append(f"conf.prereqs must be one of {', '.join(_PREREQ_POLICIES)}")
        if not isinstance(conf.get("buildflags"), str):
            issues.append("conf.buildflags must be a string")
    if not isinstance(cfg.get("driver", {}).get("scrub_env", []), list):
        issues.append("driver.scrub_env should be a list")
    index = cfg.get("index", {})
    if not isinstance(index, dict):
        issues.append("index should be a mapping of module name to entry")
    else:
        for name, entry in index.items():
            if not isinstance(entry, dict) or not entry.get("path"):
                issues.append(f"index.{name} needs at least a 'path'")
    return (len(issues) == 0, issues)

# ----------------------------
# Loading / reloading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    for p in _find_candidates(explicit):
        if p and p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    `overrides` is merged last (used by the CLI and tests).
    Returns Config object.
    """
    global _CONFIG, _CONFIG_PATH
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            data = _load_file(cfg_path)
            if data is None:
                logger.warning("config: file found but could not be parsed: %s", str(cfg_path))
            else:
                raw = data
        _CONFIG_PATH = cfg_path
        merged = _deep_merge(DEFAULTS, raw)
        if overrides:
            merged = _deep_merge(merged, overrides)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ValueError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(_CONFIG_PATH) if _CONFIG_PATH else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def set_config(cfg: Optional[Config]) -> None:
    """Install a Config object directly (None forces a fresh load on next access)."""
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = cfg

def reload(explicit_path: Optional[str] = None) -> Config:
    return load(explicit_path)

def config_path() -> Optional[Path]:
    return _CONFIG_PATH

# ----------------------------
# Save: write only override (diff) to avoid clobbering defaults
# ----------------------------
def _compute_override(merged: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    def diff(a: Any, b: Any) -> Any:
        if type(a) != type(b):
            return deepcopy(a)
        if isinstance(a, dict):
            out = {}
            for k, v in a.items():
                if k not in b:
                    out[k] = deepcopy(v)
                else:
                    d = diff(v, b[k])
                    if d is not None:
                        out[k] = d
            return out or None
        if a != b:
            return deepcopy(a)
        return None
    r = diff(merged, defaults)
    return r or {}

def save(path: Optional[str] = None, override_only: bool = True) -> Path:
    with _CONFIG_LOCK:
        merged = get_config().as_dict()
        out_path = Path(path) if path else (_CONFIG_PATH or (Path.home() / ".config" / "mbdist" / "config.yaml"))
        out_path.parent.mkdir(parents=True, exist_ok=True)
        to_write = _compute_override(merged, _normalize_and_coerce(DEFAULTS)) if override_only else merged
        with open(out_path, "w", encoding="utf-8") as fh:
            if out_path.suffix.lower() == ".json":
                json.dump(to_write, fh, indent=2, ensure_ascii=False)
            else:
                yaml.safe_dump(to_write, fh, default_flow_style=False, sort_keys=False)
        logger.info("config: saved config to %s (override_only=%s)", out_path, override_only)
        return out_path

# ----------------------------
# Convenience helpers for modules
# ----------------------------
def get_conf(name: str, default: Any = None) -> Any:
    return get_config().get_conf(name, default)

def get_program(name: str) -> Optional[str]:
    return get_config().get_program(name)

def validate_config() -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(get_config().merged)
    perl = get_program("perl")
    if not perl:
        issues.append("programs.perl not configured and no perl found on PATH")
    return (len(issues) == 0, issues)
