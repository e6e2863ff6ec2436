# mbdist/modules/installer.py
"""
Install strategies.

Chosen once per install() call from the effective privilege level:
  - privileged   -> InProcessInstaller: dispatch 'install' on the driver handle
  - unprivileged -> ElevatedProcessInstaller: run '[sudo] perl Build install <flags>'
                    as a separate process, output captured into a buffer
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, List, Optional

from mbdist.modules.driver import BuildDriverAdapter, _safe_run, build_script, driver_environment
from mbdist.modules.errors import InstallProcessFailed
from mbdist.modules.flags import split_like_shell, translate
from mbdist.modules.logging import get_logger
from mbdist.modules.messages import MessageStack

logger = get_logger("installer")


def is_privileged() -> bool:
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        # no uid concept (Windows): the process installs by itself
        return True
    return geteuid() == 0


@dataclass
class InstallContext:
    source_dir: str
    handle: Any
    build_flags: Optional[str]
    perl: str
    sudo: Optional[str]
    verbose: bool
    timeout: Optional[int] = None


class InProcessInstaller:
    name = "in-process"

    def __init__(self, adapter: BuildDriverAdapter, messages: MessageStack):
        self.adapter = adapter
        self.messages = messages

    def install(self, ctx: InstallContext) -> bool:
        return self.adapter.dispatch(ctx.handle, "install", translate(ctx.build_flags))


class ElevatedProcessInstaller:
    name = "elevated-process"

    def __init__(self, messages: MessageStack):
        self.messages = messages
        self.buffer = ""

    def command(self, ctx: InstallContext) -> List[str]:
        cmd = [ctx.perl, build_script(ctx.source_dir), "install"] + split_like_shell(ctx.build_flags)
        if ctx.sudo:
            cmd.insert(0, ctx.sudo)
        return cmd

    def install(self, ctx: InstallContext) -> bool:
        cmd = self.command(ctx)
        rc, self.buffer = _safe_run(cmd, cwd=ctx.source_dir, env=driver_environment(), timeout=ctx.timeout)
        if ctx.verbose and self.buffer:
            logger.info("%s", self.buffer.rstrip())
        if rc != 0:
            err = InstallProcessFailed(
                f"Could not run 'Build install': {self.buffer.strip() or f'exit status {rc}'}",
                context={"cmd": " ".join(cmd), "returncode": rc},
            )
            self.messages.error(str(err))
            return False
        return True


def select_installer(privileged: bool, adapter: BuildDriverAdapter, messages: MessageStack):
    if privileged:
        return InProcessInstaller(adapter, messages)
    return ElevatedProcessInstaller(messages)
