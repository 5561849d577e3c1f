# pylint: disable=missing-module-docstring
import importlib

__version__ = '0.1.0'

# ----------------------------------------------------------------------
# Lazy import of submodules (the SPM interface is only needed for inversion)
# ----------------------------------------------------------------------
__all__ = ["cli", "invert", "model", "reduce", "simulate", "util", "viz"]


def __getattr__(name):
    if name in __all__:
        return importlib.import_module(f"sysobs.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
