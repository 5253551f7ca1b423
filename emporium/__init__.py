"""
Emporium — Reward Redemption & EXP Economy Engine
==================================================
Lets players exchange earned experience points for catalog rewards while
keeping the economy honest: balances never go negative or get spent
twice, finite stock never goes below zero under concurrent redemptions,
and every redemption moves through a monotonic fulfillment lifecycle
with compensating cancel/refund transitions.

Package layout::

    emporium/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Type/status groupings, clock helpers
    ├── errors.py          # Typed error taxonomy
    ├── database/
    │   ├── engine.py      # Engine, transactional session, conflict retry
    │   └── models.py      # ORM models (users, ledger, rewards, redemptions…)
    ├── engine/
    │   ├── effects.py     # RewardEffect tagged variant per reward type
    │   ├── eligibility.py # Pure eligibility validator
    │   ├── lifecycle.py   # Status transition rules, boost activity
    │   └── cache.py       # Bounded TTL cache for catalog reads
    ├── services/
    │   ├── catalog_service.py       # Audited reward CRUD + catalog reads
    │   ├── ledger_service.py        # Guarded balance deltas + history
    │   ├── redemption_service.py    # redeem() state machine entry point
    │   ├── fulfillment_service.py   # Digital grants, physical progression
    │   ├── status_guard.py          # Status-guarded redemption UPDATEs
    │   ├── cancellation_service.py  # Cancel / forced refund
    │   └── repair_service.py        # Idempotent consistency repair
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine/config/cache/JWT identity dependencies
        └── routes/        # Player + admin REST endpoints
"""

__version__ = "1.0.0"
