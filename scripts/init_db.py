#!/usr/bin/env python3
"""
Create tables and seed the default plan tiers (weekly / monthly / yearly).
Run from the project root: python -m scripts.init_db
or: PYTHONPATH=. python scripts/init_db.py
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import lawnet.models  # noqa: F401  (registers tables)
from lawnet.db.base import Base
from lawnet.db.session import SessionLocal, engine
from lawnet.services.app_settings.settings_service import AppSettingsService
from lawnet.services.plan_tiers.service import PlanTierService


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        tiers = PlanTierService(db)
        tiers.seed_default_tiers()
        db.commit()
        AppSettingsService(db).get_or_create()
        print("Plan tiers:")
        for t in tiers.list_tiers(include_disabled=True):
            print(f"  {t.key:<8} {t.duration_seconds // 86400:>4}d  {t.label}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
