# mbdist/__init__.py
"""mbdist - Module::Build distribution adapter for a CPAN-style package manager."""

__version__ = "0.2.0"
