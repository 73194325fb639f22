#!/usr/bin/env python3
"""
Mill Stock Database Initialization Script
Creates the ledger tables and optionally seeds warehouses, varieties,
kunchinittus and an outturn for a fresh installation
"""
import sys
from pathlib import Path

# Add parent directory to path to import millstock modules
sys.path.append(str(Path(__file__).parent.parent))

import logging
from sqlalchemy import inspect

from millstock.core.config import settings
from millstock.core.database import SessionLocal, engine, init_db
from millstock.models import KunchinittuRec, OutturnRec, VarietyRec, WarehouseRec

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REQUIRED_TABLES = [
    "warehouses", "varieties", "kunchinittus", "outturns", "movement_events",
    "purchase_rates", "rice_productions", "opening_balances", "balance_audit_trails",
]

SEED_VARIETIES = [("IR64", "IR"), ("SONA MASURI", "SM"), ("BPT", "BPT")]


def init_database():
    """Create all tables and verify the schema"""
    logger.info(f"Initializing database at {engine.url.render_as_string(hide_password=True)}")
    init_db()

    existing = set(inspect(engine).get_table_names())
    missing = [t for t in REQUIRED_TABLES if t not in existing]
    if missing:
        raise RuntimeError(f"Tables missing after initialization: {', '.join(missing)}")
    logger.info(f"Verified {len(REQUIRED_TABLES)} ledger tables")


def seed_master_data():
    """Insert a starter warehouse layout if the database is empty"""
    db = SessionLocal()
    try:
        if db.query(WarehouseRec).count() > 0:
            logger.info("Master data already present, skipping seed")
            return

        varieties = [VarietyRec(name=name, code=code) for name, code in SEED_VARIETIES]
        main = WarehouseRec(code="W1", name="Main Godown", location="Mill yard")
        river = WarehouseRec(code="W2", name="River Godown", location="East bank")
        db.add_all([*varieties, main, river])
        db.flush()

        bays = [
            KunchinittuRec(code=f"K{n}", name=f"Bay {n}", warehouse_id=warehouse.warehouse_id)
            for n, warehouse in enumerate([main, main, river, river], start=1)
        ]
        # First bay of each godown is reserved for IR64
        bays[0].variety_id = varieties[0].variety_id
        bays[2].variety_id = varieties[0].variety_id
        db.add_all(bays)
        db.add(OutturnRec(code="OUT-001", allotted_variety="IR64", outturn_type="Raw"))
        db.commit()
        logger.info(f"Seeded {len(varieties)} varieties, 2 warehouses, {len(bays)} kunchinittus, 1 outturn")
    except Exception as e:
        db.rollback()
        logger.error(f"Seeding failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    try:
        init_database()
        if "--seed" in sys.argv[1:]:
            seed_master_data()
        logger.info(f"{settings.APP_NAME} database ready")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
