# mbdist/modules/host.py
"""
host.py - the package-manager side of the adapter

The dist phases only talk to the host through the narrow surface below:
a config provider, package records, a chdir primitive that reports instead
of raising, include-path registration and a test-report callback.

LocalHost/LocalPackage implement that surface for standalone use (the CLI):
the module index comes from the `index` config section, reports are written
as YAML files, include paths go to PERL5LIB.
"""

from __future__ import annotations

import contextlib
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

import yaml

from mbdist.modules.config import Config, get_config
from mbdist.modules.driver import _safe_run, driver_environment, numify_version
from mbdist.modules.errors import DirectoryChangeFailed
from mbdist.modules.logging import get_logger
from mbdist.modules.messages import MessageStack
from mbdist.modules.status import PackageStatus

logger = get_logger("host")

_MODULE_NAME_RE = re.compile(r"^\w+(::\w+)*$")

# -----------------------
# Contract
# -----------------------
class ConfigProvider(Protocol):
    def get_conf(self, name: str, default: Any = None) -> Any: ...

    def get_program(self, name: str) -> Optional[str]: ...


class PackageRecord(Protocol):
    module: str
    package_name: str
    package_version: str
    status: PackageStatus

    def create_and_install(self, **opts: Any) -> bool: ...

    def is_uptodate(self, version: Optional[str] = None) -> bool: ...


class Host(Protocol):
    configure_object: ConfigProvider

    def module_tree(self, name: str) -> Optional[PackageRecord]: ...

    def chdir(self, directory: str) -> bool: ...

    def add_to_includepath(self, directories: List[str]) -> bool: ...

    def send_report(self, module: PackageRecord, failed: bool, buffer: str, verbose: bool = False,
                    force: bool = False, tests_skipped: bool = False) -> bool: ...


# -----------------------
# Scoped working directory
# -----------------------
def restore_directory(host: Host, orig: str, messages: MessageStack) -> bool:
    if host.chdir(orig):
        return True
    messages.error(f"Could not chdir back to start dir '{orig}'")
    return False


@contextlib.contextmanager
def working_directory(host: Host, directory: str, messages: MessageStack) -> Iterator[str]:
    """chdir into `directory` through the host; always change back on exit. Yields the original dir."""
    orig = os.getcwd()
    if not host.chdir(directory):
        raise DirectoryChangeFailed(f"Could not chdir to build directory '{directory}'", context={"dir": directory})
    try:
        yield orig
    finally:
        restore_directory(host, orig, messages)


# -----------------------
# Local implementation
# -----------------------
class LocalPackage:
    def __init__(self, host: "LocalHost", module: str, path: Optional[str],
                 package_name: Optional[str] = None, package_version: Optional[str] = None):
        self.host = host
        self.module = module
        self.package_name = package_name or module.replace("::", "-")
        self.package_version = str(package_version) if package_version is not None else "0"
        self.status = PackageStatus(extract=os.path.abspath(path) if path else None)

    def __repr__(self) -> str:
        return f"<LocalPackage {self.module} {self.package_name}-{self.package_version}>"

    def create_and_install(self, format: Optional[str] = None, force: bool = False, verbose: bool = False,
                           target: str = "install", prereq_build: bool = False, **_: Any) -> bool:
        # imported here: dist builds on top of this module
        from mbdist.modules.dist import DistBuild

        dist = self.status.dist_cpan or DistBuild(self, self.host)
        logger.info("building %s (target=%s, prereq_build=%s)", self.module, target, prereq_build)
        if not dist.prepare(force=force, verbose=verbose):
            return False
        if target == "prepare":
            return True
        if not dist.create(force=force, verbose=verbose, prereq_build=prereq_build):
            return False
        if target == "create":
            return True
        ok = dist.install(force=force, verbose=verbose)
        self.status.installed = ok
        return ok

    def installed_version(self) -> Optional[str]:
        if not _MODULE_NAME_RE.match(self.module):
            return None
        perl = self.host.configure_object.get_program("perl") or "perl"
        rc, out = _safe_run(
            [perl, f"-M{self.module}", "-e", f"print ${self.module}::VERSION // 0"],
            env=driver_environment(),
            timeout=60,
        )
        if rc != 0:
            return None
        return out.strip() or "0"

    def is_uptodate(self, version: Optional[str] = None) -> bool:
        inst = self.installed_version()
        if inst is None:
            return False
        try:
            return numify_version(inst) >= numify_version(version or "0")
        except ValueError:
            logger.debug("unparseable version for %s: %s", self.module, inst)
            return False


class LocalHost:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self._packages: Dict[str, LocalPackage] = {}
        self.include_paths: List[str] = []

    @property
    def configure_object(self) -> Config:
        return self.config

    def register(self, module: str, path: str, package_name: Optional[str] = None,
                 package_version: Optional[str] = None) -> LocalPackage:
        pkg = LocalPackage(self, module, path, package_name, package_version)
        self._packages[module] = pkg
        return pkg

    def module_tree(self, name: str) -> Optional[LocalPackage]:
        if name in self._packages:
            return self._packages[name]
        entry = (self.config.get("index") or {}).get(name)
        if not entry:
            return None
        return self.register(name, entry.get("path"), entry.get("package"), entry.get("version"))

    def chdir(self, directory: str) -> bool:
        try:
            os.chdir(directory)
        except OSError as e:
            logger.error("chdir to %s failed: %s", directory, e)
            return False
        return True

    def add_to_includepath(self, directories: List[str]) -> bool:
        current = [p for p in os.environ.get("PERL5LIB", "").split(os.pathsep) if p]
        for d in directories:
            d = os.path.abspath(d)
            if d not in current:
                current.insert(0, d)
            if d not in self.include_paths:
                self.include_paths.append(d)
        os.environ["PERL5LIB"] = os.pathsep.join(current)
        return True

    def send_report(self, module: LocalPackage, failed: bool, buffer: str, verbose: bool = False,
                    force: bool = False, tests_skipped: bool = False) -> bool:
        report = {
            "module": module.module,
            "dist": f"{module.package_name}-{module.package_version}",
            "grade": "FAIL" if failed else "PASS",
            "tests_skipped": bool(tests_skipped),
            "force": bool(force),
            "created_at": int(time.time()),
            "buffer": buffer,
        }
        outdir = Path(self.config.get("reports.dir") or "~/.mbdist/reports").expanduser()
        try:
            outdir.mkdir(parents=True, exist_ok=True)
            path = outdir / f"{report['dist']}-{report['created_at']}.yaml"
            with open(path, "w", encoding="utf-8") as fh:
                yaml.safe_dump(report, fh, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error("failed writing report for %s: %s", module.module, e)
            return False
        logger.info("report %s written to %s", report["grade"], path)
        return True
