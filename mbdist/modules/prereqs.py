# mbdist/modules/prereqs.py
"""
prereqs.py - prerequisite normalization and recursive resolution

Features:
- Tagged version constraints: Unconstrained | MinimumVersion(v) | Unparsed(raw)
- Module::Build version ranges are not understood; they degrade to "any version"
- Recursive create+install of unmet prerequisites through the host package record
- Policies: follow (build them), ignore (skip them), fail (refuse to build)
- Guard against a package re-entering its own resolution chain
"""

from __future__ import annotations

import contextlib
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Union

from mbdist.modules.errors import PrerequisiteFailed
from mbdist.modules.host import Host, restore_directory
from mbdist.modules.logging import get_logger
from mbdist.modules.messages import MessageStack

logger = get_logger("prereqs")

_NUMERIC_RE = re.compile(r"^[\d.]+$")

# -----------------------
# Constraints
# -----------------------
@dataclass(frozen=True)
class Unconstrained:
    wanted: str = "0"
    satisfied_by_any: bool = True

    def __str__(self) -> str:
        return "any version"


@dataclass(frozen=True)
class MinimumVersion:
    version: str
    satisfied_by_any: bool = False

    @property
    def wanted(self) -> str:
        return self.version

    def __str__(self) -> str:
        return f">= {self.version}"


@dataclass(frozen=True)
class Unparsed:
    """A range expression we cannot evaluate; treated as 'any version'."""

    raw: str
    wanted: str = "0"
    satisfied_by_any: bool = True

    def __str__(self) -> str:
        return f"any version (unparsed '{self.raw}')"


VersionConstraint = Union[Unconstrained, MinimumVersion, Unparsed]


def normalize_constraint(raw: Any) -> VersionConstraint:
    if isinstance(raw, (Unconstrained, MinimumVersion, Unparsed)):
        return raw
    text = "" if raw is None else str(raw).strip()
    if not text or text == "0":
        return Unconstrained()
    if _NUMERIC_RE.match(text):
        # '0.0', '0.00' and friends ask for nothing either
        if not text.replace(".", "").strip("0"):
            return Unconstrained()
        return MinimumVersion(text)
    return Unparsed(text)


def normalize_prereqs(mapping: Optional[Mapping[str, Any]]) -> Dict[str, VersionConstraint]:
    """Fresh normalized map; never merged with an earlier one."""
    return {str(name): normalize_constraint(raw) for name, raw in (mapping or {}).items()}

# -----------------------
# Resolution chain
# -----------------------
_IN_PROGRESS: Set[str] = set()


@contextlib.contextmanager
def resolving(name: str) -> Iterator[None]:
    """Mark `name` as being built further up the current recursion chain."""
    added = name not in _IN_PROGRESS
    _IN_PROGRESS.add(name)
    try:
        yield
    finally:
        if added:
            _IN_PROGRESS.discard(name)


def in_progress() -> Set[str]:
    return set(_IN_PROGRESS)

# -----------------------
# Resolver
# -----------------------
POLICIES = ("follow", "ignore", "fail")


class PrerequisiteResolver:
    def __init__(self, host: Host, messages: Optional[MessageStack] = None):
        self.host = host
        self.messages = messages or MessageStack("prereqs")
        self.failed: List[str] = []
        self.skipped: List[str] = []

    def _uptodate(self, pkg: Any, constraint: VersionConstraint) -> bool:
        try:
            return bool(pkg.is_uptodate(constraint.wanted))
        except Exception as e:
            logger.debug("is_uptodate failed for %s: %s", getattr(pkg, "module", pkg), e)
            return False

    def resolve(self, prereqs: Optional[Mapping[str, Any]], *, format: str = "", force: bool = False,
                verbose: bool = False, target: str = "", policy: str = "follow") -> bool:
        """Build and install every unmet prerequisite. False if any of them failed."""
        if policy not in POLICIES:
            logger.warning("unknown prereqs policy %r, using 'follow'", policy)
            policy = "follow"
        self.failed = []
        self.skipped = []
        orig = os.getcwd()
        try:
            for name, raw in (prereqs or {}).items():
                constraint = normalize_constraint(raw)
                try:
                    pkg = self.host.module_tree(name)
                except Exception as e:
                    logger.debug("module_tree raised for %s", name, exc_info=True)
                    self.messages.error(str(PrerequisiteFailed(name, f"lookup failed: {e}")))
                    self.failed.append(name)
                    continue
                if pkg is None:
                    # not in the index: often core (e.g. Config); assume satisfiable
                    logger.debug("prerequisite %s not in module index, skipping", name)
                    self.skipped.append(name)
                    continue
                if name in _IN_PROGRESS:
                    logger.warning("prerequisite cycle on %s, leaving it to the outer build", name)
                    self.skipped.append(name)
                    continue
                if self._uptodate(pkg, constraint):
                    self.messages.msg(f"Prerequisite '{name}' ({constraint}) already satisfied", verbose)
                    continue
                if policy == "ignore":
                    self.messages.msg(f"Ignoring unmet prerequisite '{name}' ({constraint})", verbose)
                    self.skipped.append(name)
                    continue
                if policy == "fail":
                    self.messages.error(str(PrerequisiteFailed(name, f"{constraint} not installed and prereqs policy is 'fail'")))
                    self.failed.append(name)
                    continue

                self.messages.msg(f"Installing prerequisite '{name}' ({constraint})", verbose)
                try:
                    with resolving(name):
                        ok = pkg.create_and_install(
                            format=format,
                            force=force,
                            verbose=verbose,
                            target=target or "install",
                            prereq_build=True,
                        )
                except Exception as e:
                    logger.debug("create_and_install raised for %s", name, exc_info=True)
                    self.messages.error(str(PrerequisiteFailed(name, str(e))))
                    self.failed.append(name)
                    continue
                if not ok:
                    self.messages.error(str(PrerequisiteFailed(name)))
                    self.failed.append(name)
        finally:
            restore_directory(self.host, orig, self.messages)
        return not self.failed
