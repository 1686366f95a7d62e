"""requests-based client for the FRED series observations API."""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import requests

from fx_fred.exceptions import ProviderMalformedResponse, ProviderRejected, ProviderUnavailable
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

FRED_API_URL = "https://api.stlouisfed.org/fred"
# FRED publishes a dot for days without an observation (bank holidays).
MISSING_VALUE_MARKER = "."
# Throttling is transient even though it is a 4xx.
_TRANSIENT_CLIENT_STATUSES = {408, 429}


class FredClient:
    """Fetch daily exchange-rate observations for a FRED series."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = FRED_API_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._today = today

    def fetch(self, series_code: str, start_date: date | None = None) -> dict[date, Decimal]:
        """Return ``{date: rate}`` for ``series_code`` starting at ``start_date``."""

        params: dict[str, str] = {"series_id": series_code, "file_type": "json"}
        if self.api_key:
            params["api_key"] = self.api_key
        if start_date is not None:
            params["observation_start"] = start_date.isoformat()
        url = f"{self.base_url}/series/observations"

        LOGGER.info(
            "Fetching FRED series %s starting from %s",
            series_code,
            start_date.isoformat() if start_date else "the beginning of its history",
        )
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderUnavailable(
                f"FRED request for {series_code} failed: {exc}", series_code=series_code
            ) from exc

        self._raise_for_status(response, series_code)
        observations = self._parse_observations(response, series_code, start_date)
        LOGGER.info("FRED returned %s observations for %s", len(observations), series_code)
        return observations

    def _raise_for_status(self, response: requests.Response, series_code: str) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = self._error_message(response)
        message = f"FRED responded with HTTP {status} for {series_code}"
        if detail:
            message = f"{message}: {detail}"
        if status >= 500 or status in _TRANSIENT_CLIENT_STATUSES:
            raise ProviderUnavailable(message, series_code=series_code)
        raise ProviderRejected(message, series_code=series_code, status_code=status)

    @staticmethod
    def _error_message(response: requests.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            message = payload.get("error_message")
            return str(message) if message else None
        return None

    def _parse_observations(
        self,
        response: requests.Response,
        series_code: str,
        start_date: date | None,
    ) -> dict[date, Decimal]:
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise ProviderMalformedResponse(
                f"FRED returned a non-JSON body for {series_code}", series_code=series_code
            ) from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("observations"), list):
            raise ProviderMalformedResponse(
                f"FRED payload for {series_code} has no observations list",
                series_code=series_code,
            )

        today = self._today()
        rates: dict[date, Decimal] = {}
        for observation in payload["observations"]:
            if not isinstance(observation, dict):
                raise ProviderMalformedResponse(
                    f"Unexpected observation entry for {series_code}: {observation!r}",
                    series_code=series_code,
                )
            raw_date = observation.get("date")
            raw_value = str(observation.get("value") or "").strip()
            try:
                observed_on = date.fromisoformat(str(raw_date))
            except ValueError as exc:
                raise ProviderMalformedResponse(
                    f"Invalid observation date {raw_date!r} for {series_code}",
                    series_code=series_code,
                ) from exc
            if raw_value in ("", MISSING_VALUE_MARKER):
                continue
            if observed_on > today:
                LOGGER.debug("Dropping future observation %s for %s", observed_on, series_code)
                continue
            if start_date is not None and observed_on < start_date:
                continue
            try:
                rate = Decimal(raw_value)
            except InvalidOperation as exc:
                raise ProviderMalformedResponse(
                    f"Invalid rate {raw_value!r} on {observed_on} for {series_code}",
                    series_code=series_code,
                ) from exc
            if not rate.is_finite() or rate <= 0:
                raise ProviderMalformedResponse(
                    f"Non-positive rate {raw_value!r} on {observed_on} for {series_code}",
                    series_code=series_code,
                )
            rates[observed_on] = rate
        return rates

    def close(self) -> None:  # pragma: no cover - trivial
        self.session.close()

    def __enter__(self) -> "FredClient":  # pragma: no cover - trivial
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # pragma: no cover - trivial
        self.close()


__all__ = ["FRED_API_URL", "FredClient", "MISSING_VALUE_MARKER"]
