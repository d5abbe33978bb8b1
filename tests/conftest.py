import json
import os
import tempfile

os.environ["DATA_ROOT"] = tempfile.mkdtemp(prefix="multipack-test-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["SHOPIFY_API_SECRET"] = ""
os.environ["CRON_SECRET"] = ""

import pytest

from multipack_hub import database
from multipack_hub.db_models import ShopSession, VariantRule

from fakes import SHOP, FakeGateway


@pytest.fixture(autouse=True)
async def db():
    """Fresh in-memory database per test."""
    await database.init_db("sqlite+aiosqlite://")
    await database.create_tables()
    yield
    await database.close_db()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def add_rule():
    """Insert a VariantRule row; mappings are (target, multiplier) pairs."""

    async def _add(variant_id, mappings=None, shop=SHOP, calculate=True, raw_mappings=None, **legacy):
        if raw_mappings is None and mappings is not None:
            raw_mappings = json.dumps([
                {"targetVariantId": t, "multiplier": m} for t, m in mappings
            ])
        async with database.get_session_context() as s:
            s.add(VariantRule(
                shop=shop,
                variant_id=variant_id,
                deduction_mappings=raw_mappings,
                calculate_inventory_for_self_mapping=calculate,
                **legacy,
            ))

    return _add


@pytest.fixture
def add_session():
    async def _add(shop=SHOP, token="shpat_test", online=False):
        async with database.get_session_context() as s:
            s.add(ShopSession(id=f"offline_{shop}" if not online else f"online_{shop}",
                              shop=shop, access_token=token, is_online=online))

    return _add


@pytest.fixture
async def api(gateway):
    """httpx client on the FastAPI app, with every Shopify call going to the fake gateway."""
    from contextlib import asynccontextmanager

    import httpx

    from multipack_hub.main import app
    from multipack_hub.routers.deps import get_gateway_factory

    @asynccontextmanager
    async def factory(shop_session):
        yield gateway

    app.dependency_overrides[get_gateway_factory] = lambda: factory
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
