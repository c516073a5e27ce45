# storefront/services/product_client.py
from decimal import Decimal

import requests

from storefront.utils.retry import http_retry
from storefront.utils.settings import PRODUCT_SERVICE_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class ProductClient:
    """HTTP client for the catalog service: existence and current price."""

    def __init__(self, base_url: str | None = None, timeout: int = 2, session: requests.Session | None = None):
        self.base_url = (base_url or PRODUCT_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    @http_retry()
    def fetch_product(self, product_id: int) -> dict | None:
        url = f"{self.base_url}/products/{product_id}"
        logger.info(f"ProductClient GET {url}")

        resp = self.http.get(url, timeout=self.timeout)
        # 404 is an answer, not a transport failure, so it is not retried
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def product_exists(self, product_id: int) -> bool:
        return self.fetch_product(product_id) is not None

    def get_price(self, product_id: int) -> Decimal | None:
        pdata = self.fetch_product(product_id)
        if pdata is None:
            return None
        return Decimal(str(pdata["price"]))
