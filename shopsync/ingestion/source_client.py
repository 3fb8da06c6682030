"""
External Feed Client

Fetches the product and order feeds from the upstream e-commerce API:
- Both endpoints are requested concurrently
- Any non-2xx answer (or transport failure) fails the whole fetch
- Records are validated one by one; bad records are set aside, not fatal

No retries happen here; the scheduler owns retry policy.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Tuple, Type, TypeVar, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shopsync.config import Settings, get_settings
from shopsync.database.models import utcnow
from shopsync.sync.errors import FetchError

logger = structlog.get_logger(__name__)

# Upper bound of a Numeric(10, 2) money column
MAX_PRICE = Decimal("100000000")


# =============================================================================
# FEED RECORDS
# =============================================================================

class ProductFeedRecord(BaseModel):
    """Product as published by the feed"""
    model_config = ConfigDict(extra="ignore")

    product_id: Union[int, str]
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(ge=0, lt=MAX_PRICE)
    unit: Optional[str] = None
    image: Optional[str] = None
    discount: Decimal = Field(default=Decimal("0"), ge=0, lt=MAX_PRICE)
    availability: bool = True
    brand: Optional[str] = None
    category: str = "Uncategorized"
    rating: Optional[Decimal] = Field(default=None, ge=0, le=5)

    @property
    def external_id(self) -> str:
        return str(self.product_id)


class OrderLine(BaseModel):
    """Line of a feed order"""
    model_config = ConfigDict(extra="ignore")

    product_id: Union[int, str]
    quantity: int = Field(default=1, gt=0)


class OrderFeedRecord(BaseModel):
    """Order as published by the feed"""
    model_config = ConfigDict(extra="ignore")

    order_id: Union[int, str]
    user_id: Optional[Union[int, str]] = None
    items: List[OrderLine] = Field(default_factory=list)
    total_price: Optional[Decimal] = None
    status: Optional[str] = None

    @property
    def source_id(self) -> str:
        return str(self.order_id)

    @property
    def customer_id(self) -> Optional[str]:
        return None if self.user_id is None else str(self.user_id)


@dataclass
class RejectedRecord:
    """A feed record that failed validation"""
    kind: str
    index: int
    identifier: Optional[str]
    errors: str


@dataclass
class FeedSnapshot:
    """Everything one fetch produced"""
    products: List[ProductFeedRecord]
    orders: List[OrderFeedRecord]
    rejected_products: List[RejectedRecord] = field(default_factory=list)
    rejected_orders: List[RejectedRecord] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=utcnow)


RecordT = TypeVar("RecordT", bound=BaseModel)


def parse_feed(
    payload: List[Any],
    model: Type[RecordT],
    kind: str,
    id_field: str,
) -> Tuple[List[RecordT], List[RejectedRecord]]:
    """
    Validate each raw record on its own.

    Returns:
        Tuple of (valid records in feed order, rejected records)
    """
    valid: List[RecordT] = []
    rejected: List[RejectedRecord] = []

    for index, raw in enumerate(payload):
        try:
            valid.append(model.model_validate(raw))
        except ValidationError as e:
            identifier = raw.get(id_field) if isinstance(raw, dict) else None
            rejected.append(
                RejectedRecord(
                    kind=kind,
                    index=index,
                    identifier=None if identifier is None else str(identifier),
                    errors="; ".join(
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                    ),
                )
            )
            logger.warning(
                "Rejected feed record",
                kind=kind,
                index=index,
                identifier=identifier,
                errors=e.error_count(),
            )

    return valid, rejected


# =============================================================================
# CLIENT
# =============================================================================

class SourceClient:
    """Client for the upstream product and order feeds."""

    def __init__(
        self,
        base_url: str,
        products_path: str = "/products",
        orders_path: str = "/orders",
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.products_path = products_path
        self.orders_path = orders_path
        self.timeout = timeout
        self.api_key = api_key
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SourceClient":
        source = (settings or get_settings()).source
        return cls(
            base_url=source.base_url,
            products_path=source.products_path,
            orders_path=source.orders_path,
            timeout=source.timeout_seconds,
            api_key=source.api_key.get_secret_value() if source.api_key else None,
            transport=transport,
        )

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def fetch_catalog_and_orders(self) -> FeedSnapshot:
        """
        Fetch both feeds concurrently.

        Raises:
            FetchError: If either feed fails; carries both status codes
        """
        logger.info("Fetching feeds", base_url=self.base_url)

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            products_res, orders_res = await asyncio.gather(
                client.get(self.products_path),
                client.get(self.orders_path),
                return_exceptions=True,
            )

        products_status = _status_of(products_res)
        orders_status = _status_of(orders_res)

        for side, result in (("products", products_res), ("orders", orders_res)):
            if isinstance(result, BaseException):
                if not isinstance(result, httpx.HTTPError):
                    raise result
                logger.error("Feed request failed", feed=side, error=str(result))

        if not (_is_success(products_status) and _is_success(orders_status)):
            raise FetchError(
                "Failed to fetch data",
                products_status=products_status,
                orders_status=orders_status,
            )

        products_payload = _json_array(products_res, "products", products_status, orders_status)
        orders_payload = _json_array(orders_res, "orders", products_status, orders_status)

        products, rejected_products = parse_feed(products_payload, ProductFeedRecord, "product", "product_id")
        orders, rejected_orders = parse_feed(orders_payload, OrderFeedRecord, "order", "order_id")

        logger.info(
            "Feeds fetched",
            products=len(products),
            orders=len(orders),
            rejected_products=len(rejected_products),
            rejected_orders=len(rejected_orders),
        )

        return FeedSnapshot(
            products=products,
            orders=orders,
            rejected_products=rejected_products,
            rejected_orders=rejected_orders,
        )


def _status_of(result: Union[httpx.Response, BaseException]) -> Optional[int]:
    return result.status_code if isinstance(result, httpx.Response) else None


def _is_success(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 300


def _json_array(
    response: httpx.Response,
    feed: str,
    products_status: Optional[int],
    orders_status: Optional[int],
) -> List[Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise FetchError(
            f"{feed} feed returned invalid JSON: {e}",
            products_status=products_status,
            orders_status=orders_status,
        ) from e

    if not isinstance(payload, list):
        raise FetchError(
            f"{feed} feed did not return a JSON array",
            products_status=products_status,
            orders_status=orders_status,
        )
    return payload
