"""Database initialisation and migration runner."""

import asyncio
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import update

from messenger.db.session import AsyncSessionLocal
from messenger.models.user import User


def _build_alembic_config() -> Config:
    backend_dir = Path(__file__).resolve().parents[2]
    cfg = Config(str(backend_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(backend_dir / "alembic"))
    return cfg


async def init_db() -> None:
    """Run Alembic migrations to keep the schema up to date."""
    cfg = _build_alembic_config()
    await asyncio.to_thread(command.upgrade, cfg, "head")
    await _reset_presence()


async def _reset_presence() -> None:
    """Mark everyone offline; live connections do not survive a restart."""
    async with AsyncSessionLocal() as session:
        await session.execute(
            update(User).where(User.status != "offline").values(status="offline")
        )
        await session.commit()
