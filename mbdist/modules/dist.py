# mbdist/modules/dist.py
# -*- coding: utf-8 -*-
"""
dist.py - Module::Build distribution lifecycle

API principal:
  dist = DistBuild(package, host)
  dist.prepare()     # perl Build.PL, collect prerequisites
  dist.create()      # satisfy prerequisites, Build, Build test
  dist.install()     # Build install (in-process, or [sudo] perl Build install)
  dist.dist_dir()    # prepare + Build distdir -> path of <Name>-<version>

Comportamento:
  - Each phase is idempotent: a cached success is returned unless force is set.
  - create refuses to run before a successful prepare.
  - install refuses to retry an install that already failed, unless forced.
  - Phases never raise: failures are reported through the message stack and
    surface as a False (or None) return plus the status record fields.
  - The working directory is always restored when a phase returns.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, Optional, Union

from mbdist.modules.config import get_config
from mbdist.modules.driver import DRIVER_NAME, BuildDriverAdapter, blib_libdir, build_script
from mbdist.modules.errors import (
    DirectoryChangeFailed,
    MBDistError,
    NoSourceDir,
    NotPrepared,
    PreviouslyFailed,
    ReportSendFailed,
)
from mbdist.modules.flags import translate
from mbdist.modules.host import Host, PackageRecord, working_directory
from mbdist.modules.installer import InstallContext, is_privileged, select_installer
from mbdist.modules.logging import get_logger
from mbdist.modules.messages import MessageStack, get_message_stack
from mbdist.modules.prereqs import PrerequisiteResolver, normalize_prereqs, resolving
from mbdist.modules.status import StatusRecord

logger = get_logger("dist")

INSTALLER_TYPE = "mbdist"


class DistBuild:
    """One Module::Build source tree being built for a host package record."""

    def __init__(self, module: PackageRecord, host: Host, adapter: Optional[BuildDriverAdapter] = None,
                 messages: Optional[MessageStack] = None, privileged: Union[bool, Callable[[], bool], None] = None):
        self.module = module
        self.host = host
        self.messages = messages or (adapter.messages if adapter else get_message_stack())
        self.adapter = adapter or BuildDriverAdapter(messages=self.messages)
        self.status = StatusRecord()
        self._privileged = privileged
        module.status.installer_type = INSTALLER_TYPE

    def __repr__(self) -> str:
        return f"<DistBuild {getattr(self.module, 'module', self.module)}>"

    @classmethod
    def format_available(cls, adapter: Optional[BuildDriverAdapter] = None) -> bool:
        return (adapter or BuildDriverAdapter()).check_available()

    # ----------------------
    # Internal helpers
    # ----------------------
    def _delegate(self, register: bool = True) -> "DistBuild":
        """The dist object that owns this package's status (at most one per package)."""
        current = self.module.status.dist_cpan
        if current is None:
            if register:
                self.module.status.dist_cpan = self
            return self
        return current

    @property
    def source_dir(self) -> Optional[str]:
        return self.module.status.extract

    def _conf(self, name: str) -> Any:
        return self.host.configure_object.get_conf(name)

    def _program(self, name: str) -> Optional[str]:
        return self.host.configure_object.get_program(name)

    def _resolve_args(self, opts: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
        # unknown options are accepted and dropped
        args = {}
        for key, default in defaults.items():
            value = opts.get(key)
            args[key] = default if value is None else value
        return args

    def _privileged_now(self) -> bool:
        if self._privileged is None:
            return is_privileged()
        if callable(self._privileged):
            return bool(self._privileged())
        return bool(self._privileged)

    def _send_report(self, failed: bool, verbose: bool, force: bool, tests_skipped: bool = False) -> None:
        try:
            ok = self.host.send_report(
                module=self.module,
                failed=failed,
                buffer=self.messages.stack_as_string(),
                verbose=verbose,
                force=force,
                tests_skipped=tests_skipped,
            )
        except Exception as e:
            logger.debug("send_report raised: %s", e, exc_info=True)
            ok = False
        if not ok:
            self.messages.error(str(ReportSendFailed(f"Failed to send test report for '{self.module.module}'")))

    def _report_failure(self, phase: str, exc: Exception) -> None:
        if isinstance(exc, MBDistError):
            self.messages.error(str(exc))
            return
        # host or driver callbacks raising something of their own
        logger.debug("%s raised for %s", phase, self.module.module, exc_info=True)
        self.messages.error(f"Unexpected failure during '{phase}' of '{self.module.module}': {exc}")

    # ----------------------
    # prepare
    # ----------------------
    def prepare(self, **opts: Any) -> bool:
        dist = self._delegate()
        if dist is not self:
            return dist.prepare(**opts)

        args = self._resolve_args(opts, {
            "force": self._conf("force"),
            "verbose": self._conf("verbose"),
            "perl": self._program("perl") or "perl",
            "buildflags": self._conf("buildflags") or "",
        })
        st = self.status
        if st.prepared and not args["force"]:
            return True
        st.prepare_args = args

        directory = self.source_dir
        failed = False
        try:
            if not directory:
                raise NoSourceDir("No dir found to operate on!")
            with working_directory(self.host, directory, self.messages):
                st.build_flags = args["buildflags"]
                handle = self.adapter.construct(directory, translate(args["buildflags"]), args["perl"])
                if handle is None:
                    failed = True
                    st.prepare_path = False
                else:
                    st.driver_handle = handle
                    st.prepare_path = getattr(handle, "build_script", None) or build_script(directory)
                    requires = self.adapter.requirements(handle)
                    self.module.status.prereqs = normalize_prereqs(requires)
        except Exception as e:
            self._report_failure("prepare", e)
            st.prepared = False
            return False

        if failed and self._conf("cpantest"):
            self._send_report(True, args["verbose"], args["force"])

        st.dist_dir = directory
        st.prepared = not failed
        return st.prepared

    # ----------------------
    # create
    # ----------------------
    def create(self, **opts: Any) -> bool:
        dist = self._delegate()
        if dist is not self:
            return dist.create(**opts)

        args = self._resolve_args(opts, {
            "force": self._conf("force"),
            "verbose": self._conf("verbose"),
            "perl": self._program("perl") or "perl",
            "buildflags": self._conf("buildflags") or "",
            "skiptest": self._conf("skiptest"),
            "prereq_target": "",
            "prereq_format": "",
            "prereq_build": False,
        })
        st = self.status
        if st.created and not args["force"]:
            return True
        st.create_args = args

        if not st.prepared:
            self.messages.error(str(NotPrepared(
                f"You have not successfully prepared a '{INSTALLER_TYPE}' distribution yet -- cannot create yet")))
            return False

        directory = self.source_dir
        verbose = args["verbose"]
        failed = prereq_failed = False
        try:
            if not directory:
                raise NoSourceDir("No dir found to operate on!")
            with working_directory(self.host, directory, self.messages):
                flags = translate(args["buildflags"])
                st.build_flags = args["buildflags"]

                resolver = PrerequisiteResolver(self.host, self.messages)
                with resolving(self.module.module):
                    ok = resolver.resolve(
                        self.module.status.prereqs,
                        format=args["prereq_format"],
                        force=args["force"],
                        verbose=verbose,
                        target=args["prereq_target"],
                        policy=self._conf("prereqs") or "follow",
                    )

                # nested builds change directories; come back
                if not self.host.chdir(directory):
                    raise DirectoryChangeFailed(f"Could not chdir to build directory '{directory}'")

                if not ok:
                    self.messages.error(
                        f"Unable to satisfy prerequisites for '{self.module.module}' -- aborting install")
                    st.built = False
                    failed = prereq_failed = True
                else:
                    failed = not self._build_and_test(directory, flags, args)
        except Exception as e:
            self._report_failure("create", e)
            st.created = False
            return False

        # prerequisite failures are not this package's test result
        if self._conf("cpantest") and not prereq_failed:
            self._send_report(failed, verbose, args["force"], tests_skipped=bool(args["skiptest"]))

        st.created = not failed
        return st.created

    def _build_and_test(self, directory: str, flags: Dict[str, Any], args: Dict[str, Any]) -> bool:
        st = self.status
        if not self.adapter.dispatch(st.driver_handle, "build", flags):
            st.built = False
            return False
        st.built = True

        try:
            self.host.add_to_includepath([blib_libdir(directory)])
        except Exception as e:
            self.messages.error(f"Could not add '{blib_libdir(directory)}' to the include path: {e}")

        if args["skiptest"]:
            self.messages.msg("Tests skipped", args["verbose"])
            return True

        if not self.adapter.dispatch(st.driver_handle, "test", flags):
            st.tested = False
            if not args["force"]:
                return False
            self.messages.msg("Test failures ignored because 'force' is set", args["verbose"])
            return True
        st.tested = True
        return True

    # ----------------------
    # install
    # ----------------------
    def install(self, **opts: Any) -> bool:
        dist = self._delegate(register=False)
        if dist is not self:
            return dist.install(**opts)

        args = self._resolve_args(opts, {
            "verbose": self._conf("verbose"),
            "force": self._conf("force"),
            "perl": self._program("perl") or "perl",
        })
        st = self.status
        st.install_args = args

        directory = self.source_dir
        if not directory:
            self.messages.error(str(NoSourceDir("No dir found to operate on!")))
            return False

        if st.failed("installed") and not args["force"]:
            self.messages.error(str(PreviouslyFailed(
                f"Module '{self.module.module}' has failed to install before this session -- aborting install")))
            return False

        installer = select_installer(self._privileged_now(), self.adapter, self.messages)
        ctx = InstallContext(
            source_dir=directory,
            handle=st.driver_handle,
            build_flags=st.build_flags,
            perl=args["perl"],
            sudo=self._program("sudo"),
            verbose=args["verbose"],
            timeout=get_config().get("driver.timeout"),
        )
        try:
            with working_directory(self.host, directory, self.messages):
                logger.debug("installing %s with the %s installer", self.module.module, installer.name)
                ok = installer.install(ctx)
        except Exception as e:
            self._report_failure("install", e)
            ok = False

        st.installed = ok
        return ok

    # ----------------------
    # uninstall
    # ----------------------
    def uninstall(self, **opts: Any) -> bool:
        dist = self._delegate(register=False)
        if dist is not self:
            return dist.uninstall(**opts)
        self.messages.error(
            f"{DRIVER_NAME} keeps no uninstall action -- cannot uninstall '{self.module.module}'")
        self.status.uninstalled = False
        return False

    # ----------------------
    # dist_dir
    # ----------------------
    def dist_dir(self, **opts: Any) -> Optional[str]:
        dist = self._delegate(register=False)
        if dist is not self:
            return dist.dist_dir(**opts)

        directory = self.source_dir
        if not directory:
            self.messages.error(str(NoSourceDir("No dir found to operate on!")))
            return None

        try:
            with working_directory(self.host, directory, self.messages):
                if not self.prepare(**opts):
                    return None
                if not self.adapter.dispatch(self.status.driver_handle, "distdir", {}):
                    return None
                # /path/to/Foo-Bar-1.2/Foo-Bar-1.2
                distdir = os.path.join(directory, f"{self.module.package_name}-{self.module.package_version}")
                if not os.path.isdir(distdir):
                    self.messages.error("Do not know where 'distdir' got created")
                    return None
        except Exception as e:
            self._report_failure("distdir", e)
            return None
        return distdir
