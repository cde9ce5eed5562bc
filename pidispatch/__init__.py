"""pidispatch: templated task dispatch and fan-out for the `pi` coding-agent CLI.

This package turns structured task descriptions into `pi` command lines and runs them, one
at a time or as concurrent fan-outs, collecting each run's output into its own sink
(`pidispatch.cli:main`, runnable via `python -m pidispatch`).

What pidispatch provides
- Four-section task templates (`pidispatch.template`): Objective, Output Format, Context,
  Boundaries, with optional context compression.
- An invocation builder (`pidispatch.invocation`) mapping model/thinking/tool/session/output
  settings onto `pi` flags, including fuzzy model selection (`pidispatch.models`).
- A dispatcher (`pidispatch.dispatch`) with sequential and join-all fan-out execution, and
  file/capture/stream sinks.
- An event filter (`pidispatch.events`) that extracts final assistant text from
  `pi --mode json` streams, and an RPC client (`pidispatch.rpc`) for `pi --mode rpc`.
- YAML manifests (`pidispatch.manifest`) for dependency-ordered fan-outs with a merge step.

What pidispatch intentionally does not do
- Implement `pi` or talk to LLM providers directly; everything goes through the `pi` executable.
- Retry, time out, or cancel runs. A failed run's result carries whatever `pi` emitted.

Key exports from this module
- `__version__`: the package version string. (`__all__` is intentionally limited to this.)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
