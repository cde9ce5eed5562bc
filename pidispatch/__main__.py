"""Module entrypoint for ``python -m pidispatch``.

A thin wrapper around :func:`pidispatch.cli.main`: all argument parsing and dispatch happen
there, and ``SystemExit(main())`` makes the CLI return code the process exit status.

Exit status
-----------
- ``0``: every run succeeded (or ``--dry-run``).
- ``1``: at least one ``pi`` invocation exited non-zero, or a fan-out job was skipped because
  a dependency failed.
- ``2``: argument errors (raised by ``argparse``) or no subcommand given.

Uncaught exceptions (a missing ``pi`` executable, an invalid manifest, a dependency deadlock)
propagate with a stack trace and a non-zero status.
"""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
