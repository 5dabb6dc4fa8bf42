"""
Frankfurter API Client

Async client for Frankfurter, a free API over the European Central Bank's
daily reference rates (no key).

API Documentation:
    https://frankfurter.dev

Endpoints Used:
    GET /latest?base=USD&symbols=EUR,GBP
        {"amount": 1.0, "base": "USD", "date": "2024-06-03",
         "rates": {"EUR": 0.92, "GBP": 0.78}}

    GET /2024-01-01..2024-01-31?base=USD&symbols=EUR
        {"amount": 1.0, "base": "USD", "start_date": "2024-01-02",
         "end_date": "2024-01-31",
         "rates": {"2024-01-02": {"EUR": 0.9103}, ...}}

Rates read "1 base = rate target". Only ECB publication days carry data.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from core.errors import NotFoundError, ParseError
from core.fiat import fiat_name
from core.schemas import ChartPoint, PriceHistory, Sampling
from core.utils.time import parse_utc_date
from providers.http_client import PARSE_ERRORS, ProviderHTTPClient


class FrankfurterAPIClient(ProviderHTTPClient):

    PROVIDER_ID = "frankfurter"
    BASE_URL = "https://api.frankfurter.dev/v1"

    def _rates(self, payload: Any, path: str) -> Dict[str, Any]:
        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise ParseError(f"Missing rates in response from {path}", self.PROVIDER_ID)
        return rates

    async def get_latest_rates(self, base: str, targets: Sequence[str]) -> Dict[str, Decimal]:
        """
        Latest reference rates for ``targets`` against ``base``.

        Returns:
            Target code -> rate. Codes the ECB does not publish are absent.
        """
        path = "/latest"
        payload = await self._get(path, {"base": base.upper(), "symbols": ",".join(t.upper() for t in targets)})
        try:
            return {code.upper(): Decimal(str(value)) for code, value in self._rates(payload, path).items()}
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed rate in response from {path}: {e}", self.PROVIDER_ID) from e

    async def get_rate_history(
        self,
        base: str,
        targets: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> Dict[str, PriceHistory]:
        """
        Daily reference rates over ``[start, end]``, one series per target.

        A target without a single published rate in the window is left out
        of the result.
        """
        base = base.upper()
        targets = [t.upper() for t in targets]
        path = f"/{start.date().isoformat()}..{end.date().isoformat()}"
        payload = await self._get(path, {"base": base, "symbols": ",".join(targets)})
        rates = self._rates(payload, path)

        series: Dict[str, List[ChartPoint]] = {t: [] for t in targets}
        try:
            for day, day_rates in rates.items():
                try:
                    stamp = parse_utc_date(day)
                except ValueError:
                    self.logger.debug(f"Skipping malformed Frankfurter date '{day}'")
                    continue
                for target, value in (day_rates or {}).items():
                    if target.upper() in series and value is not None:
                        series[target.upper()].append(ChartPoint(timestamp=stamp, price=float(value)))
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed rate in response from {path}: {e}", self.PROVIDER_ID) from e

        histories = {
            target: PriceHistory(
                symbol=f"{base}/{target}",
                name=f"{fiat_name(base)} in {fiat_name(target)}",
                currency=target,
                provider=self.PROVIDER_ID,
                sampling=Sampling.DAILY,
                start=start,
                end=end,
                points=points,
            )
            for target, points in series.items()
            if points
        }
        if not histories:
            raise NotFoundError(
                f"No reference rates for {base} -> {', '.join(targets)}", self.PROVIDER_ID, symbols=targets
            )
        return histories
