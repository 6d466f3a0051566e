"""
Dustbin: find the dusty binaries on this machine.

Dustbin watches which installed command-line executables are actually run,
so that packages nobody uses (and the shared libraries only they pull in)
can be identified and removed with confidence.

Package layout (src/dustbin/):
  core/      : config, ledger, scanner/reconciler, monitor supervisor,
                daemon loop, dependency graph and orphan detection
  os/        : per-platform event sources, dylib introspection, service files
  cli/       : Click CLI entry point
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
