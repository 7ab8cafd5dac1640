# shopcart/services/coupon_validator.py
from decimal import Decimal
from typing import Any, Dict, Literal, Mapping

import requests
from pydantic import BaseModel, Field, ValidationError

from shopcart.domain.errors import CouponCheckFailed
from shopcart.domain.policy import round_money
from shopcart.utils.logging import get_logger
from shopcart.utils.retry import http_retry
from shopcart.utils.settings import Settings

logger = get_logger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponRule(BaseModel):
    """percentage: value w procentach, fixed: kwota."""

    type: Literal["percentage", "fixed"]
    value: Decimal = Field(..., gt=0)
    minimum_purchase: Decimal | None = Field(None, ge=0)
    max_discount: Decimal | None = Field(None, gt=0)

    def apply(self, subtotal: Decimal) -> Decimal | None:
        if self.minimum_purchase is not None and subtotal < self.minimum_purchase:
            return None

        if self.type == "percentage":
            discount = subtotal * self.value / Decimal("100")
        else:
            discount = self.value

        if self.max_discount is not None:
            discount = min(discount, self.max_discount)
        return round_money(discount)


class StaticCouponValidator:
    """Tabela kuponow w procesie (COUPON_RULES)."""

    def __init__(self, rules: Mapping[str, CouponRule | Dict[str, Any]]):
        self.rules = {
            normalize_code(code): rule if isinstance(rule, CouponRule) else CouponRule.model_validate(rule)
            for code, rule in rules.items()
        }

    def evaluate(self, code: str, subtotal: Decimal) -> Decimal | None:
        rule = self.rules.get(normalize_code(code))
        if rule is None:
            return None
        return rule.apply(subtotal)


class CouponEvaluation(BaseModel):
    valid: bool
    discount: Decimal = Decimal("0")


class CouponClient:
    """Zdalny coupon-service: GET /coupons/{code}?subtotal=..."""

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
        self._get = http_retry(max_attempts)(self._get_once)

    def _get_once(self, url: str, params: Dict[str, Any]) -> requests.Response:
        logger.info(f"CouponClient GET {url}")
        resp = self.http.get(url, params=params, timeout=self.timeout)
        if resp.status_code != 404:
            resp.raise_for_status()
        return resp

    def evaluate(self, code: str, subtotal: Decimal) -> Decimal | None:
        code = normalize_code(code)
        url = f"{self.base_url}/coupons/{code}"
        try:
            resp = self._get(url, {"subtotal": str(subtotal)})
            if resp.status_code == 404:
                return None
            result = CouponEvaluation.model_validate(resp.json())
        except (requests.RequestException, ValidationError, ValueError) as e:
            raise CouponCheckFailed("Coupon service is unavailable", code=code) from e

        if not result.valid:
            return None
        return round_money(result.discount)

    def close(self) -> None:
        self.http.close()


def build_coupon_validator(settings: Settings):
    if settings.COUPON_SERVICE_URL:
        return CouponClient(
            settings.COUPON_SERVICE_URL,
            timeout=settings.PROVIDER_TIMEOUT,
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        )
    if settings.COUPON_RULES:
        return StaticCouponValidator(settings.COUPON_RULES)
    return None
