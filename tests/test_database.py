"""Session and transaction helpers."""
import pytest
from sqlalchemy import select

from multipack_hub.database import check_db_health, get_session_context, transaction
from multipack_hub.db_models import VariantRule

from fakes import SHOP, vid


async def _variant_ids():
    async with get_session_context() as db:
        result = await db.execute(select(VariantRule.variant_id))
        return list(result.scalars().all())


async def test_transaction_commits_on_success():
    async with get_session_context() as db:
        async with transaction(db):
            db.add(VariantRule(shop=SHOP, variant_id=vid(1)))

    assert await _variant_ids() == [vid(1)]


async def test_transaction_rolls_back_on_error():
    async with get_session_context() as db:
        with pytest.raises(RuntimeError):
            async with transaction(db):
                db.add(VariantRule(shop=SHOP, variant_id=vid(1)))
                await db.flush()
                raise RuntimeError("boom")

    assert await _variant_ids() == []


async def test_health_check():
    assert (await check_db_health())["status"] == "healthy"
