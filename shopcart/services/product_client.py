# shopcart/services/product_client.py
from decimal import Decimal
from typing import Any, Dict

import requests
from pydantic import ValidationError

from shopcart.domain.errors import (
    AvailabilityCheckFailed,
    AvailabilityCheckTimedOut,
    ProductUnavailable,
)
from shopcart.domain.schemas import Availability, ProductInfo
from shopcart.utils.logging import get_logger
from shopcart.utils.retry import http_retry

logger = get_logger(__name__)


class ProductClient:
    """
    Klient product-service (cena + stan magazynu).
    Bledy transportu -> AvailabilityCheckFailed, nigdy "niedostepny",
    zeby chwilowa awaria nie wygladala jak brak towaru.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        max_attempts: int = 3,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self._get_json = http_retry(max_attempts)(self._get_json_once)

    def _get_json_once(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"ProductClient GET {url}")

        resp = self.http.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _call(self, path: str, product_id: str, params: Dict[str, Any] | None = None) -> Any:
        try:
            return self._get_json(path, params)
        except requests.Timeout as e:
            logger.warning(f"Product service timed out for product {product_id}")
            raise AvailabilityCheckTimedOut(
                "Product service did not answer in time", product_id=product_id
            ) from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 404:
                raise ProductUnavailable(
                    "Product does not exist", product_id=product_id
                ) from e
            raise AvailabilityCheckFailed(
                "Product service returned an error", product_id=product_id, status=status
            ) from e
        except (requests.RequestException, ValueError) as e:
            raise AvailabilityCheckFailed(
                "Product service is unavailable", product_id=product_id
            ) from e

    def fetch_product(self, product_id: str, variant_id: str | None = None) -> ProductInfo:
        params = {"variant_id": variant_id} if variant_id else None
        data = self._call(f"/products/{product_id}", product_id, params)
        try:
            info = ProductInfo.model_validate({"product_id": product_id, "variant_id": variant_id, **data})
        except (ValidationError, TypeError) as e:
            raise AvailabilityCheckFailed(
                "Product service returned a malformed product", product_id=product_id
            ) from e
        return info

    def get_price(self, product_id: str) -> Decimal:
        return self.fetch_product(product_id).price

    def check_availability(
        self, product_id: str, quantity: int, variant_id: str | None = None
    ) -> Availability:
        params: Dict[str, Any] = {"quantity": quantity}
        if variant_id:
            params["variant_id"] = variant_id

        data = self._call(f"/products/{product_id}/availability", product_id, params)
        try:
            return Availability.model_validate(data)
        except (ValidationError, TypeError) as e:
            raise AvailabilityCheckFailed(
                "Product service returned a malformed availability", product_id=product_id
            ) from e

    def close(self) -> None:
        self.http.close()
