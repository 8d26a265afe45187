"""
Ricrea lo schema del database di Care Ledger.

Uso:
    python reset_db.py            # elimina e ricrea tutte le tabelle
    python reset_db.py --drop     # elimina soltanto

Le procedure memorizzate (generate_invoice_ledger) non sono gestite qui.
"""

import argparse
import asyncio
import logging
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare careledger.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from careledger.core.database import engine
from careledger.models import Base

logger = logging.getLogger("reset_db")


async def reset(drop_only: bool = False) -> None:
    logger.info("Connessione al database, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        if not drop_only:
            logger.info("Tabelle eliminate. Creazione di %d tabelle...", len(Base.metadata.tables))
            await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Database resettato con successo")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset dello schema Care Ledger")
    parser.add_argument("--drop", action="store_true", help="Elimina le tabelle senza ricrearle")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(reset(drop_only=args.drop))
