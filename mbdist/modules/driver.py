# mbdist/modules/driver.py
# -*- coding: utf-8 -*-
"""
driver.py - Module::Build driver adapter

API principal:
  adapter = BuildDriverAdapter(ModuleBuildLibrary(), messages=stack)
  handle = adapter.construct(srcdir, flags, perl)      # perl Build.PL <flags>
  ok = adapter.dispatch(handle, "build", flags)        # perl Build build <flags>
  prereqs = adapter.requirements(handle)               # MYMETA.json / MYMETA.yml

Comportamento:
  - The driver library (Module::Build) is checked once for availability and a
    minimum version before any handle is constructed.
  - Library failures raise DriverError; the adapter turns them into a reported
    message and a None/False result, never an uncaught exception.
  - Every driver process runs with a scrubbed environment (driver.scrub_env).
"""

from __future__ import annotations

import json
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import yaml

from mbdist.modules.config import get_config
from mbdist.modules.errors import ActionDispatchFailed, DriverConstructionFailed, DriverError, FormatUnavailable
from mbdist.modules.flags import flags_as_argv
from mbdist.modules.logging import get_logger
from mbdist.modules.messages import MessageStack, get_message_stack

logger = get_logger("driver")

BUILD_PL = "Build.PL"
DRIVER_NAME = "Module::Build"
ACTIONS = ("build", "test", "install", "distdir")

# --- conventions ---
def build_script(directory: Optional[str] = None) -> str:
    name = "Build"
    # on VMS, '.com' is appended when creating the Build file
    if sys.platform == "OpenVMS":
        name += ".com"
    return os.path.join(directory, name) if directory else name

def blib_libdir(directory: str) -> str:
    return os.path.join(directory, "blib", "lib")

# --- environment assembly ---
def driver_environment(scrub: Optional[List[str]] = None, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Environment for driver processes: drop ambient module-search-path
    injections so the dist builds and tests against a clean perl.
    """
    env = dict(base if base is not None else os.environ)
    if scrub is None:
        scrub = get_config().get("driver.scrub_env", ["PERL5OPT"]) or []
    for key in scrub:
        env.pop(key, None)
    env["PERL_MM_USE_DEFAULT"] = "1"
    return env

# --- helpers ---
def _safe_run(cmd: List[str], cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None, timeout: Optional[int] = None) -> Tuple[int, str]:
    """Run command with stdout and stderr combined. Returns (rc, output)."""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        p = subprocess.Popen(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, env=env, text=True)
    except OSError as e:
        return 127, str(e)
    try:
        out, _ = p.communicate(timeout=timeout)
        return p.returncode, out or ""
    except subprocess.TimeoutExpired:
        p.kill()
        out, _ = p.communicate()
        return 124, (out or "") + f"\n[timed out after {timeout}s]"

_DOTTED_RE = re.compile(r"^v?\d+(\.\d+){2,}$")

def numify_version(version: Any) -> float:
    """Perl-style numification: '0.2611' -> 0.2611, 'v1.2.3' / '1.2.3' -> 1.002003."""
    text = str(version).strip().replace("_", "")
    if not text:
        return 0.0
    if text.startswith("v") or _DOTTED_RE.match(text):
        parts = [int(p) for p in text.lstrip("v").split(".")]
        value = float(parts[0])
        for i, part in enumerate(parts[1:], start=1):
            value += part / (1000 ** i)
        return value
    m = re.match(r"^\d+(\.\d+)?", text)
    if not m:
        raise ValueError(f"not a version: {version!r}")
    return float(m.group(0))

# --- driver library contract ---
class DriverHandle(Protocol):
    build_script: str

    def dispatch(self, action: str, flags: Optional[Mapping[str, Any]] = None) -> str: ...

    def requires(self) -> Dict[str, str]: ...


class DriverLibrary(Protocol):
    def version(self) -> str: ...

    def new_from_context(self, source_dir: str, flags: Mapping[str, Any], perl: Optional[str] = None) -> DriverHandle: ...


class ModuleBuildHandle:
    """A generated Build script inside an extracted source tree."""

    def __init__(self, source_dir: str, perl: str, env: Optional[Dict[str, str]] = None, timeout: Optional[int] = None):
        self.source_dir = source_dir
        self.perl = perl
        self.env = env
        self.timeout = timeout
        self.build_script = build_script(source_dir)
        self.last_output = ""

    def __repr__(self) -> str:
        return f"<ModuleBuildHandle {self.build_script}>"

    def dispatch(self, action: str, flags: Optional[Mapping[str, Any]] = None) -> str:
        cmd = [self.perl, self.build_script, action] + flags_as_argv(flags)
        # fresh env per action: include paths registered since construction must be visible
        env = self.env if self.env is not None else driver_environment()
        rc, out = _safe_run(cmd, cwd=self.source_dir, env=env, timeout=self.timeout)
        self.last_output = out
        if rc != 0:
            raise DriverError(f"'{action}' exited with status {rc}: {out.strip()[-2000:]}", returncode=rc, output=out)
        return out

    def requires(self) -> Dict[str, str]:
        meta_json = Path(self.source_dir) / "MYMETA.json"
        if meta_json.exists():
            data = json.loads(meta_json.read_text(encoding="utf-8"))
            reqs = ((data.get("prereqs") or {}).get("runtime") or {}).get("requires") or {}
            return {str(k): str(v) for k, v in reqs.items()}
        meta_yml = Path(self.source_dir) / "MYMETA.yml"
        if meta_yml.exists():
            data = yaml.safe_load(meta_yml.read_text(encoding="utf-8")) or {}
            reqs = data.get("requires") or {}
            return {str(k): str(v) for k, v in reqs.items()}
        return {}


class ModuleBuildLibrary:
    """Module::Build reached through the perl interpreter."""

    def __init__(self, perl: Optional[str] = None, timeout: Optional[int] = None):
        cfg = get_config()
        self.perl = perl or cfg.get_program("perl") or "perl"
        self.timeout = timeout if timeout is not None else cfg.get("driver.timeout")

    def version(self) -> str:
        rc, out = _safe_run(
            [self.perl, f"-M{DRIVER_NAME}", "-e", "print $Module::Build::VERSION"],
            env=driver_environment(),
            timeout=60,
        )
        if rc != 0:
            raise DriverError(f"cannot load {DRIVER_NAME}: {out.strip()}", returncode=rc, output=out)
        return out.strip()

    def new_from_context(self, source_dir: str, flags: Mapping[str, Any], perl: Optional[str] = None) -> ModuleBuildHandle:
        perl = perl or self.perl
        if not os.path.isfile(os.path.join(source_dir, BUILD_PL)):
            raise DriverError(f"no {BUILD_PL} in {source_dir}")
        env = driver_environment()
        rc, out = _safe_run([perl, BUILD_PL] + flags_as_argv(flags), cwd=source_dir, env=env, timeout=self.timeout)
        if rc != 0:
            raise DriverError(f"{BUILD_PL} exited with status {rc}: {out.strip()[-2000:]}", returncode=rc, output=out)
        handle = ModuleBuildHandle(source_dir, perl, timeout=self.timeout)
        if not os.path.exists(handle.build_script):
            raise DriverError(f"{BUILD_PL} did not write {handle.build_script}", returncode=rc, output=out)
        return handle


class DriverAvailability:
    """Once-per-process check that the driver library is present and new enough."""

    def __init__(self, library: DriverLibrary, min_version: Optional[str] = None):
        self.library = library
        self.min_version = str(min_version or get_config().get("driver.min_version", "0.2611"))
        self._result: Optional[bool] = None
        self.found_version: Optional[str] = None

    def check(self, messages: Optional[MessageStack] = None) -> bool:
        if self._result is not None:
            return self._result
        try:
            self.found_version = self.library.version()
            ok = numify_version(self.found_version) >= numify_version(self.min_version)
            if not ok:
                raise FormatUnavailable(f"'{DRIVER_NAME}' {self.found_version} is older than {self.min_version}")
        except (DriverError, FormatUnavailable, ValueError) as e:
            text = f"You do not have '{DRIVER_NAME}' {self.min_version} -- mbdist not available ({e})"
            if messages is not None:
                messages.error(text)
            else:
                logger.error(text)
            self._result = False
            return False
        logger.debug("%s %s available (minimum %s)", DRIVER_NAME, self.found_version, self.min_version)
        self._result = True
        return True

    def reset(self) -> None:
        self._result = None
        self.found_version = None


class BuildDriverAdapter:
    def __init__(self, library: Optional[DriverLibrary] = None, availability: Optional[DriverAvailability] = None, messages: Optional[MessageStack] = None):
        if library is None:
            library = get_default_library()
            availability = availability or get_availability()
        self.library = library
        self.availability = availability or DriverAvailability(library)
        self.messages = messages or get_message_stack()

    def check_available(self) -> bool:
        return self.availability.check(self.messages)

    def construct(self, source_dir: str, flags: Mapping[str, Any], perl: Optional[str] = None) -> Optional[DriverHandle]:
        if not self.check_available():
            return None
        try:
            handle = self.library.new_from_context(source_dir, dict(flags or {}), perl)
            if handle is None:
                raise DriverConstructionFailed("driver library returned no object")
        except Exception as e:
            self.messages.error(f"Could not create {DRIVER_NAME} object: {e}")
            return None
        return handle

    def dispatch(self, handle: Optional[DriverHandle], action: str, flags: Optional[Mapping[str, Any]] = None) -> bool:
        if handle is None:
            self.messages.error(str(ActionDispatchFailed(action, f"no {DRIVER_NAME} object")))
            return False
        try:
            handle.dispatch(action, dict(flags or {}))
        except Exception as e:
            self.messages.error(str(ActionDispatchFailed(action, str(e))))
            return False
        return True

    def requirements(self, handle: Optional[DriverHandle]) -> Dict[str, str]:
        if handle is None:
            return {}
        try:
            return dict(handle.requires() or {})
        except Exception as e:
            self.messages.error(f"Could not read prerequisites from {DRIVER_NAME}: {e}")
            return {}


# --- module-level defaults: one library and one availability check per process ---
_LIBRARY: Optional[ModuleBuildLibrary] = None
_AVAILABILITY: Optional[DriverAvailability] = None

def get_default_library() -> ModuleBuildLibrary:
    global _LIBRARY
    if _LIBRARY is None:
        _LIBRARY = ModuleBuildLibrary()
    return _LIBRARY

def get_availability() -> DriverAvailability:
    global _AVAILABILITY
    if _AVAILABILITY is None:
        _AVAILABILITY = DriverAvailability(get_default_library())
    return _AVAILABILITY
