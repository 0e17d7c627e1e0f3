"""
Totemic — Totem Engagement & Decay Scoring Engine
==================================================
Users attach "totems" (labels) to answers and like them.  Each like loses
freshness linearly over a week; a totem's *crispness* is the
freshness-weighted like value of its active likes.  Lapsed likes can be
restored for free or refreshed against a daily, tier-sized quota.

Package layout::

    totemic/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Decay window, tiers, clock helpers
    ├── errors.py          # ErrorKind + EngagementError hierarchy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Post, Profile, Setting
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── decay.py       # Weight + crispness
    │   ├── ledger.py      # LikeEvent / Label / Answer + ledger ops
    │   ├── transitions.py # Like state machine
    │   └── cache.py       # In-memory settings cache
    ├── services/
    │   ├── normalization.py        # Legacy record shapes → canonical
    │   ├── record_store.py         # Versioned post/profile transactions
    │   ├── quota_service.py        # Daily refresh quota
    │   ├── engagement_service.py   # toggle / restore / refresh + reads
    │   └── reconciliation_service.py # Drift sweeps
    └── client/
        └── reconciliation.py  # Optimistic local like state
"""

__version__ = "0.1.0"
