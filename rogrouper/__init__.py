"""
Rogrouper — Roblox Group Management Dashboard Backend
======================================================
Lets Roblox group owners manage members, roles and automated moderation
(point-based promotions, timed suspensions) through a web dashboard,
acting in Roblox through a single privileged bot account.

Package layout::

    rogrouper/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Collection names, Roblox API roots
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (documents, OAuth state, rate limit)
    │   └── documents.py   # Document store gateway (get/set/query/CAS)
    ├── services/
    │   ├── roblox_client.py        # httpx client, bot cookie + CSRF retry
    │   ├── bot_info.py             # Bot profile cache
    │   ├── site_admin_service.py   # Site admin allow-list
    │   ├── automation_service.py   # Rules, points, suspensions, sub-groups
    │   ├── suspension_service.py   # Expired-suspension sweep
    │   ├── pending_join_service.py # Bot join queue + status graph
    │   └── audit_service.py        # Per-group audit log
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Roblox OAuth2 → JWT
        ├── rate_limit.py  # Admin mutation throttle
        └── routes/        # Admin, bot, group, Roblox lookup, cron endpoints
"""

__version__ = "1.0.0"
