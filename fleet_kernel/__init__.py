"""
Fleet Kernel - requisition and trip authorization core

A transactional workflow kernel for fleet fuel requisitions with:
- Role-gated document state machines
- Optimistic version checks on every edit
- Append-only contract balance ledger
- Collision-free control number allocation
"""

__version__ = "0.1.0"
