import os
import uuid

import pytest
from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError

from app.models.base import Base
from app.models.entities import Category
from app.storage import database


def test_app_engine_enables_sqlite_foreign_keys():
    assert database.engine.dialect.name == "sqlite"
    assert event.contains(database.engine.sync_engine, "connect", database._enable_sqlite_foreign_keys)


async def test_file_backed_engine_rejects_dangling_references():
    engine = database.build_engine(os.environ["DATABASE_URL"])
    try:
        async with engine.connect() as conn:
            assert (await conn.execute(text("PRAGMA foreign_keys"))).scalar() == 1
            await conn.run_sync(Base.metadata.create_all)
            with pytest.raises(IntegrityError):
                await conn.execute(
                    Category.__table__.insert().values(
                        id=uuid.uuid4(),
                        user_id=uuid.uuid4(),
                        subject_id=uuid.uuid4(),
                        name="Dangling",
                        depth=0,
                        display_order=0,
                    )
                )
            await conn.rollback()
    finally:
        await engine.dispose()
