"""
DaCapo Toolbox - Per-App Credit Service
=======================================

Credit metering for the internal tool directory.

Scope:
- Per-app, per-user credit balances
- Append-only credit ledger
- Consumption with insufficient-balance rejection
- Supervisor-only adjustment and app role assignment

Everything else (tool catalog, labels, UI, analytics) lives outside this
package and talks to it only through the credit routes.
"""

__version__ = "1.0.0"
__product__ = "DaCapo Toolbox Credits"
