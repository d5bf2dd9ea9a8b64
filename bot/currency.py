"""
Currency Converter — Tasa oficial USD → Bs desde dolarapi.com.

La tasa se cachea en memoria con TTL; si la API falla se reutiliza
la última tasa conocida (aunque esté vencida) o se devuelve None.
"""

import logging
import threading
import time
from typing import Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DOLAR_API_URL = "https://ve.dolarapi.com/v1/dolares/oficial"


class CurrencyConverter:
    """Convierte precios en USD a bolívares."""

    def __init__(
        self,
        api_url: str = DOLAR_API_URL,
        ttl_seconds: int = 300,
        http_client: Optional[httpx.Client] = None,
        clock=time.monotonic,
    ):
        self.api_url = api_url
        self.ttl_seconds = ttl_seconds
        self._client = http_client or httpx.Client(timeout=10.0)
        self._clock = clock
        self._rate: Optional[float] = None
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()

    def get_rate(self) -> Optional[float]:
        """Bs por 1 USD (campo `promedio`), o None si nunca se pudo obtener."""
        with self._lock:
            if self._rate is not None and self._clock() - self._fetched_at < self.ttl_seconds:
                return self._rate

            try:
                response = self._client.get(
                    self.api_url, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                rate = float(response.json().get("promedio") or 0)
                if rate <= 0:
                    raise ValueError(f"Tasa inválida: {rate}")
            except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
                logger.error(f"Error obteniendo tasa USD→Bs: {e}")
                return self._rate

            self._rate = rate
            self._fetched_at = self._clock()
            logger.info(f"Tasa de conversión obtenida: 1 USD = {rate} Bs")
            return rate

    def to_bs(self, usd: float) -> Optional[float]:
        rate = self.get_rate()
        if rate is None:
            return None
        return round(usd * rate, 2)

    def enrich_products(self, products: List[Dict]) -> List[Dict]:
        """Agrega `price_bs` a cada producto (None si no hay tasa)."""
        rate = self.get_rate()
        for product in products:
            product["price_bs"] = round(product["price"] * rate, 2) if rate else None
        return products
