#!/usr/bin/env python3
# mbdist/modules/cli.py
"""
mbdist CLI - drive a Module::Build source tree through its lifecycle

Como funciona:
- loads config (config.py), applies command line overrides, re-applies logging
- registers the source tree with a LocalHost (host.py) as a package record
- each subcommand runs one or more DistBuild phases (dist.py)
- rich console output; exit status 0 ok, 1 phase failure, 2 usage/unexpected error
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
from typing import Any, Dict, List, Optional, Tuple

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mbdist import __version__
from mbdist.modules import config as config_mod
from mbdist.modules.dist import DistBuild
from mbdist.modules.driver import BUILD_PL
from mbdist.modules.host import LocalHost, LocalPackage
from mbdist.modules.logging import get_logger, reload_config
from mbdist.modules.messages import get_message_stack

logger = get_logger("cli")
console = Console(stderr=False)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2

# Foo-Bar-0.01, Foo-Bar-v1.2.3
_DIST_DIR_RE = re.compile(r"^(?P<name>.+?)-(?P<version>v?\d[\w.]*)$")

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {escape(msg)}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {escape(msg)}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {escape(msg)}")

def print_info(msg: str):
    console.print(f"[cyan]{escape(msg)}[/cyan]")

# -----------------------
# Helpers
# -----------------------
def guess_identity(path: str) -> Tuple[str, str, str]:
    """(module, package_name, package_version) guessed from an extracted dir name."""
    base = os.path.basename(os.path.abspath(path).rstrip(os.sep))
    m = _DIST_DIR_RE.match(base)
    if m:
        package, version = m.group("name"), m.group("version")
    else:
        package, version = base, "0"
    return package.replace("-", "::"), package, version

def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    conf: Dict[str, Any] = {}
    for key in ("force", "verbose", "skiptest"):
        if getattr(args, key, False):
            conf[key] = True
    if getattr(args, "buildflags", None) is not None:
        conf["buildflags"] = args.buildflags
    return {"conf": conf} if conf else {}

def _status_table(title: str, data: Dict[str, Any]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("field")
    table.add_column("value")
    for key, value in data.items():
        if isinstance(value, dict):
            value = json.dumps(value, default=str, sort_keys=True)
        table.add_row(key, "" if value is None else escape(str(value)))
    return table

# -----------------------
# CLI Implementation
# -----------------------
class MBDistCLI:
    def __init__(self, cfg: config_mod.Config):
        self.config = cfg
        self.host = LocalHost(cfg)
        self.messages = get_message_stack()

    def package_for(self, path: str, name: Optional[str] = None, version: Optional[str] = None) -> LocalPackage:
        module, package, guessed_version = guess_identity(path)
        if name:
            module = name
            package = name.replace("::", "-")
        return self.host.register(module, path, package, version or guessed_version)

    def run_phases(self, pkg: LocalPackage, phases: List[str]) -> bool:
        dist = pkg.status.dist_cpan or DistBuild(pkg, self.host, messages=self.messages)
        for phase in phases:
            print_info(f"{phase} {pkg.package_name}-{pkg.package_version} ...")
            if phase == "distdir":
                path = dist.dist_dir()
                if path is None:
                    print_err(f"distdir failed for {pkg.module}")
                    return False
                print_ok(f"distdir created at {path}")
                continue
            ok = getattr(dist, phase)()
            if not ok:
                print_err(f"{phase} failed for {pkg.module}")
                return False
            print_ok(f"{phase} ok")
        if phases and phases[-1] == "install":
            pkg.status.installed = True
        return True

    def show_status(self, pkg: LocalPackage) -> None:
        dist = pkg.status.dist_cpan
        prereqs = {name: str(c) for name, c in (pkg.status.prereqs or {}).items()}
        console.print(_status_table(f"{pkg.module} package", {
            "extract": pkg.status.extract,
            "installer_type": pkg.status.installer_type,
            "prereqs": prereqs,
        }))
        if dist is not None:
            console.print(_status_table(f"{pkg.module} dist", dist.status.as_dict()))

    def report_errors(self) -> None:
        for text in self.messages.errors:
            print_err(text)

# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="mbdist", description="Build and install Module::Build distributions")
    ap.add_argument("-V", action="version", version=f"mbdist {__version__}")
    sub = ap.add_subparsers(dest="cmd")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("path", nargs="?", default=".", help=f"extracted source tree containing {BUILD_PL}")
    common.add_argument("--name", help="module name (default: guessed from the directory)")
    common.add_argument("--version", dest="dist_version", help="distribution version (default: guessed)")
    common.add_argument("--force", action="store_true", help="redo finished phases, ignore test failures")
    common.add_argument("--verbose", action="store_true", help="show driver output")
    common.add_argument("--skiptest", action="store_true", help="do not run 'Build test'")
    common.add_argument("--buildflags", help="flags passed to Build.PL and every Build action")
    common.add_argument("--config", help="config file to load")

    sub.add_parser("prepare", parents=[common], help="run Build.PL and collect prerequisites")
    sub.add_parser("create", parents=[common], help="prepare, satisfy prerequisites, build and test")
    sub.add_parser("install", parents=[common], help="prepare, create and install")
    sub.add_parser("build", parents=[common], help="alias of install")
    sub.add_parser("distdir", parents=[common], help="create a distribution directory")
    sub.add_parser("status", parents=[common], help="prepare and show status records")

    p_config = sub.add_parser("config", help="show or validate configuration")
    p_config.add_argument("action", choices=("show", "validate"), nargs="?", default="show")
    p_config.add_argument("--config", help="config file to load")
    return ap

_PHASES = {
    "prepare": ["prepare"],
    "create": ["prepare", "create"],
    "install": ["prepare", "create", "install"],
    "build": ["prepare", "create", "install"],
    "distdir": ["distdir"],
    "status": ["prepare"],
}

def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return EXIT_ERROR

    try:
        cfg = config_mod.load(args.config, overrides=_overrides(args))
        reload_config()

        if args.cmd == "config":
            if args.action == "validate":
                ok, issues = config_mod.validate_config()
                for issue in issues:
                    print_warn(issue)
                if ok:
                    print_ok(f"config ok ({config_mod.config_path() or 'defaults'})")
                return EXIT_OK if ok else EXIT_FAILED
            console.print(yaml.safe_dump(cfg.as_dict(), default_flow_style=False, sort_keys=False),
                          markup=False, highlight=False, emoji=False, soft_wrap=True)
            return EXIT_OK

        if not os.path.isdir(args.path):
            print_err(f"not a directory: {args.path}")
            return EXIT_ERROR

        cli = MBDistCLI(cfg)
        pkg = cli.package_for(args.path, args.name, args.dist_version)
        ok = cli.run_phases(pkg, _PHASES[args.cmd])
        if args.cmd == "status" or (args.verbose and not ok):
            cli.show_status(pkg)
        if not ok:
            if not args.verbose:
                cli.report_errors()
            return EXIT_FAILED
        return EXIT_OK
    except Exception as e:
        logger.debug("command failed", exc_info=True)
        print_err(f"Command failed: {e}")
        return EXIT_ERROR

if __name__ == "__main__":
    sys.exit(main())
