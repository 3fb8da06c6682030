"""
Test Suite Configuration
"""
import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shopsync.data import FeedGenerator
from shopsync.database.connection import build_engine, build_session_factory, create_tables
from shopsync.ingestion.source_client import ProductFeedRecord, SourceClient
from shopsync.sync.unit_of_work import UnitOfWork

FEED_BASE_URL = "https://feed.test/api"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test"""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def uow(session_factory) -> UnitOfWork:
    return UnitOfWork(session_factory)


@pytest.fixture
def feed() -> Dict[str, List[Dict[str, Any]]]:
    """Seeded synthetic feed: 8 products, 4 orders"""
    return FeedGenerator(seed=7).generate(products=8, orders=4)


@pytest.fixture
def product_records(feed) -> List[ProductFeedRecord]:
    return [ProductFeedRecord.model_validate(p) for p in feed["products"]]


@pytest.fixture
def make_transport() -> Callable[..., httpx.MockTransport]:
    """
    Build a MockTransport serving the two feed endpoints.

    Example:
        transport = make_transport(products, orders, orders_status=500)
    """

    def factory(
        products: Any,
        orders: Any,
        products_status: int = 200,
        orders_status: int = 200,
        calls: Optional[List[str]] = None,
    ) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request.url.path)
            if request.url.path.endswith("/products"):
                return httpx.Response(products_status, content=_body(products))
            if request.url.path.endswith("/orders"):
                return httpx.Response(orders_status, content=_body(orders))
            return httpx.Response(404, json={"detail": "not found"})

        return httpx.MockTransport(handler)

    return factory


@pytest.fixture
def make_source(make_transport) -> Callable[..., SourceClient]:
    def factory(products: Any, orders: Any, **kwargs) -> SourceClient:
        return SourceClient(base_url=FEED_BASE_URL, transport=make_transport(products, orders, **kwargs))

    return factory


def _body(payload: Any) -> bytes:
    if isinstance(payload, (bytes, str)):
        return payload.encode("utf-8") if isinstance(payload, str) else payload
    return json.dumps(payload).encode("utf-8")
