"""Shared test fixtures: a scripted Module::Build library and an in-memory host."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from mbdist.modules import config as config_mod
from mbdist.modules.driver import BuildDriverAdapter, DriverAvailability
from mbdist.modules.errors import DriverError
from mbdist.modules.messages import MessageStack
from mbdist.modules.status import PackageStatus


class FakeHandle:
    def __init__(self, source_dir: str, requires: Dict[str, str], fail: List[str], calls: List[str]):
        self.source_dir = source_dir
        self.build_script = os.path.join(source_dir, "Build")
        self._requires = requires
        self._fail = fail
        self.calls = calls
        self.distdir_name = "Foo-Bar-0.01"

    def dispatch(self, action: str, flags: Optional[Dict[str, Any]] = None) -> str:
        self.calls.append(action)
        if action in self._fail:
            raise DriverError(f"'{action}' exited with status 1: boom", returncode=1, output="boom")
        if action == "distdir":
            os.makedirs(os.path.join(self.source_dir, self.distdir_name), exist_ok=True)
        return ""

    def requires(self) -> Dict[str, str]:
        return dict(self._requires)


class FakeDriverLibrary:
    """Stands in for Module::Build: counts constructions, fails scripted actions."""

    def __init__(self, version: str = "0.4224"):
        self._version = version
        self.requires: Dict[str, str] = {}
        self.fail: List[str] = []
        self.fail_construct = False
        self.constructed = 0
        self.calls: List[str] = []
        self.last_flags: Optional[Dict[str, Any]] = None
        self.last_cwd: Optional[str] = None
        self.distdir_name = "Foo-Bar-0.01"

    def version(self) -> str:
        return self._version

    def new_from_context(self, source_dir: str, flags: Dict[str, Any], perl: Optional[str] = None) -> FakeHandle:
        self.constructed += 1
        self.last_flags = dict(flags)
        self.last_cwd = os.getcwd()
        if self.fail_construct:
            raise DriverError("Build.PL exited with status 255: Can't locate Foo.pm")
        handle = FakeHandle(source_dir, self.requires, self.fail, self.calls)
        handle.distdir_name = self.distdir_name
        return handle


class FakeConf:
    def __init__(self, **conf: Any):
        self.conf = {"force": False, "verbose": False, "buildflags": "", "skiptest": False,
                     "cpantest": False, "prereqs": "follow"}
        self.conf.update(conf)
        self.programs = {"perl": "/usr/bin/perl", "sudo": None}

    def get_conf(self, name: str, default: Any = None) -> Any:
        return self.conf.get(name, default)

    def get_program(self, name: str) -> Optional[str]:
        return self.programs.get(name)


class FakePackage:
    def __init__(self, module: str = "Foo::Bar", extract: Optional[str] = None,
                 package_name: str = "Foo-Bar", package_version: str = "0.01"):
        self.module = module
        self.package_name = package_name
        self.package_version = package_version
        self.status = PackageStatus(extract=extract)
        self.uptodate = False
        self.result = True
        self.raises: Optional[Exception] = None
        self.install_calls: List[Dict[str, Any]] = []
        self.chdir_to: Optional[str] = None

    def create_and_install(self, **opts: Any) -> bool:
        self.install_calls.append(opts)
        if self.chdir_to:
            os.chdir(self.chdir_to)
        if self.raises:
            raise self.raises
        return self.result

    def is_uptodate(self, version: Optional[str] = None) -> bool:
        return self.uptodate


class FakeHost:
    def __init__(self, conf: Optional[FakeConf] = None):
        self.configure_object = conf or FakeConf()
        self.index: Dict[str, FakePackage] = {}
        self.include_paths: List[str] = []
        self.reports: List[Dict[str, Any]] = []
        self.report_result = True
        self.deny_chdir: List[str] = []

    def module_tree(self, name: str) -> Optional[FakePackage]:
        return self.index.get(name)

    def chdir(self, directory: str) -> bool:
        if directory in self.deny_chdir:
            return False
        try:
            os.chdir(directory)
        except OSError:
            return False
        return True

    def add_to_includepath(self, directories: List[str]) -> bool:
        self.include_paths.extend(directories)
        return True

    def send_report(self, **report: Any) -> bool:
        self.reports.append(report)
        return self.report_result


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Defaults only: no user or system config file leaks into a test."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("MBDIST_CONFIG", raising=False)

    def only_explicit(explicit=None):
        return [Path(explicit)] if explicit else []

    monkeypatch.setattr(config_mod, "_find_candidates", only_explicit)
    config_mod.set_config(None)
    yield
    config_mod.set_config(None)


@pytest.fixture
def restore_cwd():
    orig = os.getcwd()
    yield orig
    os.chdir(orig)


@pytest.fixture
def messages() -> MessageStack:
    return MessageStack("test")


@pytest.fixture
def library() -> FakeDriverLibrary:
    return FakeDriverLibrary()


@pytest.fixture
def adapter(library, messages) -> BuildDriverAdapter:
    return BuildDriverAdapter(library=library, availability=DriverAvailability(library, "0.2611"), messages=messages)


@pytest.fixture
def source_dir(tmp_path) -> str:
    d = tmp_path / "Foo-Bar-0.01"
    d.mkdir()
    (d / "Build.PL").write_text("use Module::Build;\n", encoding="utf-8")
    return str(d)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def package(source_dir) -> FakePackage:
    return FakePackage(extract=source_dir)
