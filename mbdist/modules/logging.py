# mbdist/modules/logging.py
# -*- coding: utf-8 -*-
"""
mbdist logging

Features:
 - Integration with modules.config (reload_config re-applies settings)
 - Console color formatter
 - Rotating file handler
 - JSONL transparency log with atomic append and optional fsync
 - Module-level configurable log levels (module_levels)
 - Thread-safe reconfiguration and per-level counters
"""

from __future__ import annotations
import os
import sys
import json
import time
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List

from mbdist.modules.config import get_config

# Logger for this module
_logger = logging.getLogger("mbdist.logging")

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = None, datefmt: str = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# Handler-level filter for per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        # convert level names to numeric
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "mbdist_module", None)
        if mod is None:
            # records from plain loggers (e.g. mbdist.config) still need the format field
            record.mbdist_module = record.name.rsplit(".", 1)[-1]
            mod = record.mbdist_module
        if mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

# ----------------------
# MBDistLogger (singleton)
# ----------------------
class MBDistLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()

        self._root = logging.getLogger("mbdist")
        self._root.setLevel(logging.DEBUG)  # capture everything; handlers will filter

        self._handlers: List[logging.Handler] = []
        self._module_filter = ModuleLevelFilter({})
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._jsonl_path: Optional[Path] = None
        self._jsonl_fsync: bool = False

        try:
            cfg = get_config().merged.get("logging", {})
        except ValueError:
            _logger.exception("logging: config unavailable, using defaults")
            cfg = {}
        self._apply_config(cfg)

        self._root.addFilter(self._count_levels_filter)
        self._inited = True

    # ----------------------
    # Internal helpers
    # ----------------------
    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    def _atomic_append_jsonl(self, path: Path, obj: Dict[str, Any]):
        # atomic append: use os.open with O_APPEND
        try:
            line = json.dumps(obj, ensure_ascii=False) + "\n"
            flags = os.O_CREAT | os.O_WRONLY | os.O_APPEND
            fd = os.open(str(path), flags, 0o644)
            try:
                os.write(fd, line.encode("utf-8"))
                if self._jsonl_fsync:
                    os.fsync(fd)
            finally:
                os.close(fd)
        except OSError:
            _logger.exception("logging: failed atomic append to %s", path)

    # ----------------------
    # Configuration (apply/reload)
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            self._module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})
            fmt = cfg.get("format") or "[%(asctime)s] [%(levelname)s] [%(mbdist_module)s] %(message)s"
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            console_cfg = cfg.get("console", {"enabled": True})
            if console_cfg.get("enabled", True):
                ch = logging.StreamHandler(sys.stderr)
                ch.setLevel(getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO))
                ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=cfg.get("color", True) and sys.stderr.isatty()))
                ch.addFilter(self._module_filter)
                self._root.addHandler(ch)
                self._handlers.append(ch)

            # rotating file handler
            if cfg.get("file"):
                try:
                    file_path = Path(cfg["file"]).expanduser()
                    file_path.parent.mkdir(parents=True, exist_ok=True)
                    max_bytes = _parse_size(cfg.get("max_size", "10M"))
                    backups = int(cfg.get("backups", 5))
                    fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes or 10 * 1024 * 1024, backupCount=backups, encoding="utf-8")
                    fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(mbdist_module)s] %(message)s"))
                    fh.addFilter(self._module_filter)
                    self._root.addHandler(fh)
                    self._handlers.append(fh)
                except OSError:
                    _logger.exception("logging: failed to configure file handler")

            # jsonl transparency log
            jsonl_cfg = cfg.get("jsonl", {}) or {}
            if jsonl_cfg.get("enabled"):
                try:
                    path = Path(jsonl_cfg.get("path") or "~/.mbdist/transparency.jsonl").expanduser()
                    path.parent.mkdir(parents=True, exist_ok=True)
                    self._jsonl_path = path
                    self._jsonl_fsync = bool(jsonl_cfg.get("fsync", False))
                except OSError:
                    _logger.exception("logging: failed to configure jsonl log")
                    self._jsonl_path = None
            else:
                self._jsonl_path = None
                self._jsonl_fsync = False

            _logger.debug("logging: configuration applied")

    def reload_config(self):
        """Reload config from modules.config and re-apply logging config."""
        cfg = get_config().merged.get("logging", {})
        self._apply_config(cfg)

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'mbdist_module' into records."""
        return logging.LoggerAdapter(self._root, {"mbdist_module": module_name})

    def parse_and_log(self, module: str, level: int, msg: str, **kwargs):
        """Emit a log record and also append it to the jsonl transparency log."""
        self.get_logger(module).log(level, msg, **kwargs)
        if self._jsonl_path:
            self._atomic_append_jsonl(self._jsonl_path, {
                "timestamp": time.time(),
                "level": logging.getLevelName(level),
                "module": module,
                "message": msg,
            })

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)

# ----------------------
# Helper parse size (public)
# ----------------------
def _parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mul in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mul)
        return int(float(ss))
    except ValueError:
        _logger.debug("logging: parse size failed for %s", s)
        return None

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = MBDistLogger()

def get_logger(module: str):
    return _GLOBAL_LOGGER.get_logger(module)

def parse_and_log(module: str, level: int, msg: str, **kwargs):
    return _GLOBAL_LOGGER.parse_and_log(module, level, msg, **kwargs)

def reload_config():
    return _GLOBAL_LOGGER.reload_config()

def get_metrics():
    return _GLOBAL_LOGGER.get_metrics()
