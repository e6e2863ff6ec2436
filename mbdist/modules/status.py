# mbdist/modules/status.py
"""
Status records.

StatusRecord belongs to one dist build; PackageStatus is the part of the host
package record the dist reads and writes. Tri-state fields: None (unset),
False (failed), True (succeeded).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Union


@dataclass
class StatusRecord:
    prepare_path: Union[str, bool, None] = None
    prepared: Optional[bool] = None
    built: Optional[bool] = None
    tested: Optional[bool] = None
    created: Optional[bool] = None
    installed: Optional[bool] = None
    uninstalled: Optional[bool] = None
    dist_dir: Optional[str] = None
    driver_handle: Any = None
    build_flags: Optional[str] = None
    prepare_args: Optional[Dict[str, Any]] = None
    create_args: Optional[Dict[str, Any]] = None
    install_args: Optional[Dict[str, Any]] = None

    def failed(self, name: str) -> bool:
        """True only when the field was explicitly set to failure."""
        return getattr(self, name) is False

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "driver_handle" and value is not None:
                value = repr(value)
            out[f.name] = value
        return out


@dataclass
class PackageStatus:
    extract: Optional[str] = None
    prereqs: Dict[str, Any] = field(default_factory=dict)
    installer_type: Optional[str] = None
    dist_cpan: Any = None
    installed: Optional[bool] = None
