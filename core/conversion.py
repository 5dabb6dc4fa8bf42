"""
Conversion Engine

Converts an amount of fiat money (``100usd``, ``3.5EUR``) into a list of
targets, which may mix assets and fiat currencies.

Asset targets (BTC, ETH, AAPL, ...):
    spot quote of the target in the source currency, through the normal
    provider fallback chain. A quote in any other currency (e.g. a listing
    currency) fails that attempt and the next provider is tried.
        target_amount = amount / price     rounded to 6 decimals
        rate          = price

Fiat targets (EUR, GBP, ...):
    one batched reference-rate lookup for all fiat targets; if the batch is
    rejected (e.g. a code the ECB does not publish), each target is looked
    up on its own
        target_amount = amount * fx        rounded to 2 decimals
        rate          = 1 / fx             rounded to 6 decimals

``rate`` is therefore always "units of source currency per one target
unit". A fiat target equal to the source currency converts at 1 without a
network call.

Each target is resolved independently and reported in input order; a
failure on one target never aborts the others.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.errors import (
    AllProvidersFailedError,
    EmptyRequestError,
    InvalidConversionTokenError,
    InvalidFiatCodeError,
    NotFoundError,
    ParseError,
    ProviderError,
)
from core.fallback import FallbackResolver
from core.fiat import fiat_name, is_known_fiat
from core.logging import get_logger
from core.operations import fiat_rates_operation, quotes_operation
from core.schemas import Capability, ConversionOutcome, ConversionResult, ErrorDetail
from core.utils.concurrency import gather_bounded
from core.utils.time import current_utc_datetime

logger = get_logger(__name__)

ASSET_PRECISION = Decimal("0.000001")
FIAT_PRECISION = Decimal("0.01")

_TOKEN_RE = re.compile(r"^(?P<amount>[+-]?(?:\d+(?:\.\d*)?|\.\d+))(?P<code>[A-Za-z]+)$")

_RECOVERABLE = (ProviderError, AllProvidersFailedError)


@dataclass(frozen=True)
class ConversionSource:
    amount: Decimal
    currency: str


def parse_conversion_token(token: str) -> ConversionSource:
    """
    Parse ``<decimal amount><fiat code>`` (case-insensitive, no whitespace).

    Raises:
        InvalidFiatCodeError: The suffix is not a known fiat code
        InvalidConversionTokenError: Malformed token or non-positive amount

    Example:
        >>> parse_conversion_token("3.5eur")
        ConversionSource(amount=Decimal('3.5'), currency='EUR')
    """
    raw = (token or "").strip()
    match = _TOKEN_RE.match(raw)
    if match is None:
        raise InvalidConversionTokenError(
            f"Invalid conversion amount '{token}'. Expected <amount><currency>, e.g. 100usd"
        )

    code = match.group("code").upper()
    if not is_known_fiat(code):
        raise InvalidFiatCodeError(f"Unknown fiat currency code '{code}'")

    try:
        amount = Decimal(match.group("amount"))
    except InvalidOperation:
        raise InvalidConversionTokenError(f"Invalid amount in '{token}'")
    if not amount.is_finite() or amount <= 0:
        raise InvalidConversionTokenError(f"Conversion amount must be positive, got '{token}'")

    return ConversionSource(amount=amount, currency=code)


class ConversionEngine:
    """
    Attributes:
        resolver: FallbackResolver used for asset quotes
        fiat_provider: Reference-rate provider (Frankfurter)
        max_concurrency: Worker budget for per-target quote lookups
    """

    def __init__(
        self,
        resolver: FallbackResolver,
        fiat_provider,
        max_concurrency: int = 8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.resolver = resolver
        self.fiat_provider = fiat_provider
        self.max_concurrency = max_concurrency
        self.clock = clock or current_utc_datetime

    async def convert(
        self,
        source: ConversionSource,
        targets: Sequence[str],
        provider: Optional[str] = None,
    ) -> List[ConversionOutcome]:
        """
        Convert ``source`` into every target.

        Args:
            source: Parsed conversion source
            targets: Asset symbols and/or fiat codes, in output order
            provider: Explicit provider id for asset quotes (no fallback)

        Raises:
            EmptyRequestError: No targets
            ConfigError: Explicit provider unknown / unusable
        """
        targets = [t.strip().upper() for t in targets if t.strip()]
        if not targets:
            raise EmptyRequestError("Conversion requires at least one target")

        fiat_targets = [t for t in targets if is_known_fiat(t)]
        asset_targets = [t for t in targets if not is_known_fiat(t)]

        # Resolved up front so configuration errors surface before any network call.
        candidates = (
            self.resolver.resolve_candidates(Capability.SPOT_QUOTE, provider) if asset_targets else []
        )

        asset_outcomes, fiat_outcomes = await asyncio.gather(
            self._convert_assets(source, asset_targets, candidates),
            self._convert_fiat(source, fiat_targets),
        )

        by_target: Dict[str, ConversionOutcome] = {**asset_outcomes, **fiat_outcomes}
        return [by_target[t] for t in targets]

    # ============================================
    # Asset Targets
    # ============================================

    async def _convert_assets(self, source, targets, candidates) -> Dict[str, ConversionOutcome]:
        unique = list(dict.fromkeys(targets))
        if not unique:
            return {}

        async def convert_one(target: str) -> ConversionOutcome:
            operation = quotes_operation([target], source.currency, require_currency=True)
            result = await self.resolver.run(candidates, operation)
            quote = result.value[0]
            if quote.price <= 0:
                raise ParseError(f"non-positive price for {target}", result.provider_id)
            return ConversionOutcome(
                target=target,
                result=ConversionResult(
                    source_amount=source.amount,
                    source_currency=source.currency,
                    target_symbol=quote.symbol,
                    target_name=quote.name,
                    target_amount=(source.amount / quote.price).quantize(ASSET_PRECISION, ROUND_HALF_UP),
                    rate=quote.price,
                    provider=quote.provider,
                    timestamp=quote.timestamp,
                ),
            )

        results = await gather_bounded(unique, convert_one, self.max_concurrency)

        outcomes: Dict[str, ConversionOutcome] = {}
        for target, result in zip(unique, results):
            if isinstance(result, _RECOVERABLE):
                logger.warning(f"Conversion to {target} failed: {result}")
                outcomes[target] = ConversionOutcome(target=target, error=ErrorDetail.from_exception(result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes[target] = result
        return outcomes

    # ============================================
    # Fiat Targets
    # ============================================

    async def _fetch_rates(
        self, base: str, targets: List[str]
    ) -> Tuple[Dict[str, Decimal], Dict[str, Exception]]:
        """
        Batched rate lookup, retried per target when the batch fails.

        Returns:
            (rates by target, failure by target)
        """
        try:
            result = await self.resolver.run([self.fiat_provider], fiat_rates_operation(base, targets))
            return result.value, {}
        except _RECOVERABLE as e:
            logger.warning(f"Fiat rate lookup {base} -> {', '.join(targets)} failed: {e}")
            if len(targets) == 1:
                return {}, {targets[0]: e}

        async def fetch_one(target: str) -> Dict[str, Decimal]:
            result = await self.resolver.run([self.fiat_provider], fiat_rates_operation(base, [target]))
            return result.value

        rates: Dict[str, Decimal] = {}
        failures: Dict[str, Exception] = {}
        results = await gather_bounded(targets, fetch_one, self.max_concurrency)
        for target, result in zip(targets, results):
            if isinstance(result, _RECOVERABLE):
                failures[target] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                rates.update(result)
        return rates, failures

    async def _convert_fiat(self, source, targets) -> Dict[str, ConversionOutcome]:
        unique = list(dict.fromkeys(targets))
        remote = [t for t in unique if t != source.currency]

        rates: Dict[str, Decimal] = {source.currency: Decimal(1)}
        failures: Dict[str, Exception] = {}
        if remote:
            fetched, failures = await self._fetch_rates(source.currency, remote)
            rates.update(fetched)

        now = self.clock()
        outcomes: Dict[str, ConversionOutcome] = {}
        for target in unique:
            fx = rates.get(target)
            if fx is None or fx <= 0:
                error = failures.get(target) or NotFoundError(
                    f"No reference rate for {target}", self.fiat_provider.id, symbols=[target]
                )
                outcomes[target] = ConversionOutcome(target=target, error=ErrorDetail.from_exception(error))
                continue

            outcomes[target] = ConversionOutcome(
                target=target,
                result=ConversionResult(
                    source_amount=source.amount,
                    source_currency=source.currency,
                    target_symbol=target,
                    target_name=fiat_name(target),
                    target_amount=(source.amount * fx).quantize(FIAT_PRECISION, ROUND_HALF_UP),
                    rate=(Decimal(1) / fx).quantize(ASSET_PRECISION, ROUND_HALF_UP),
                    provider=self.fiat_provider.id,
                    timestamp=now,
                ),
            )
        return outcomes
