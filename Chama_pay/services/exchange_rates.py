"""Local-currency / stable-token conversion backed by a cached rate quote.

The rate (local units per one token unit) is read through Django's cache.
A quote that cannot be refreshed degrades to the last snapshot, then to a
configured constant, so conversion never fails for availability reasons.
"""
import json
import logging
import threading
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

logger = logging.getLogger(__name__)

TOKEN_QUANTUM = Decimal('0.000001')
LOCAL_QUANTUM = Decimal('0.01')

_refresh_lock = threading.Lock()


class ExchangeRateError(Exception):
    pass


class UnsupportedCurrencyPair(ValueError):
    pass


def _currencies():
    local = getattr(settings, 'LOCAL_CURRENCY', 'KES').strip().upper()
    token = getattr(settings, 'TOKEN_CURRENCY', 'USDT').strip().upper()
    return local, token


def _cache_key():
    local, token = _currencies()
    return f'exchange_rate:{local}_{token}'


def _fallback_rate():
    return Decimal(str(getattr(settings, 'EXCHANGE_RATE_FALLBACK', '130.00')))


def make_snapshot(rate, fetched_at, valid_for_minutes):
    return {
        'rate': rate,
        'fetched_at': fetched_at,
        'valid_for_minutes': valid_for_minutes,
    }


def is_fresh(snapshot, now):
    if not snapshot:
        return False
    age = now - snapshot['fetched_at']
    return age < timedelta(minutes=snapshot['valid_for_minutes'])


def resolve_rate(cached, fresh_rate, fallback):
    """Pick the rate to use after a refresh attempt.

    Returns (rate, tier) where tier is 'fresh', 'stale' or 'fallback'.
    """
    if fresh_rate is not None:
        return fresh_rate, 'fresh'
    if cached:
        return cached['rate'], 'stale'
    return fallback, 'fallback'


def fetch_rate():
    url = getattr(settings, 'EXCHANGE_RATE_API_URL', '').strip()
    if not url:
        raise ExchangeRateError('Exchange rate API URL is not configured')

    local, _token = _currencies()
    try:
        request = Request(url=url, headers={'Accept': 'application/json'}, method='GET')
    except ValueError as error:
        raise ExchangeRateError(f'Exchange rate API URL is invalid: {error}')

    try:
        with urlopen(request, timeout=getattr(settings, 'EXCHANGE_RATE_API_TIMEOUT', 10)) as response:
            raw = response.read().decode('utf-8')
            data = json.loads(raw, parse_float=Decimal) if raw else {}
    except HTTPError as error:
        raise ExchangeRateError(f'Exchange rate API error ({error.code})')
    except URLError as error:
        raise ExchangeRateError(f'Exchange rate API unreachable: {error.reason}')
    except TimeoutError:
        raise ExchangeRateError('Exchange rate API timeout reached')
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ExchangeRateError('Exchange rate API returned invalid JSON')
    except (HTTPException, OSError) as error:
        raise ExchangeRateError(f'Exchange rate API connection failed: {error!r}')

    try:
        rate = Decimal(str(data['rates'][local]))
    except (KeyError, TypeError, InvalidOperation):
        raise ExchangeRateError(f'Exchange rate response has no {local} rate')

    if not rate.is_finite() or rate <= 0:
        raise ExchangeRateError(f'Exchange rate API returned unusable rate {rate}')
    return rate


def get_rate():
    key = _cache_key()
    snapshot = cache.get(key)
    if is_fresh(snapshot, timezone.now()):
        logger.debug('Using cached exchange rate: %s', snapshot['rate'])
        return snapshot['rate']

    with _refresh_lock:
        snapshot = cache.get(key)
        now = timezone.now()
        if is_fresh(snapshot, now):
            return snapshot['rate']

        fresh_rate = None
        try:
            fresh_rate = fetch_rate()
        except ExchangeRateError as error:
            logger.error('Error fetching exchange rate: %s', error)
        except Exception:
            # conversion must keep working through any refresh failure
            logger.exception('Unexpected error fetching exchange rate')

        rate, tier = resolve_rate(snapshot, fresh_rate, _fallback_rate())
        if tier == 'fresh':
            minutes = int(getattr(settings, 'EXCHANGE_RATE_CACHE_MINUTES', 60))
            cache.set(key, make_snapshot(rate, now, minutes), timeout=None)
            logger.info('Fetched exchange rate: 1 %s = %s %s', _currencies()[1], rate, _currencies()[0])
        elif tier == 'stale':
            logger.warning('Degraded read: using expired cached exchange rate %s (fetched %s)',
                           rate, snapshot['fetched_at'].isoformat())
        else:
            logger.warning('Using hardcoded fallback exchange rate: %s', rate)
        return rate


def local_to_token(amount, rate=None):
    rate = get_rate() if rate is None else rate
    with localcontext() as ctx:
        ctx.prec = 50
        return (Decimal(amount) / rate).quantize(TOKEN_QUANTUM, rounding=ROUND_HALF_UP)


def token_to_local(amount, rate=None):
    rate = get_rate() if rate is None else rate
    with localcontext() as ctx:
        ctx.prec = 50
        return (Decimal(amount) * rate).quantize(LOCAL_QUANTUM, rounding=ROUND_HALF_UP)


def convert(amount, from_currency, to_currency):
    local, token = _currencies()
    source = (from_currency or '').strip().upper()
    target = (to_currency or '').strip().upper()

    if source == target and source in {local, token}:
        return Decimal(amount)
    if (source, target) == (local, token):
        result = local_to_token(amount)
    elif (source, target) == (token, local):
        result = token_to_local(amount)
    else:
        raise UnsupportedCurrencyPair(f'Cannot convert {from_currency} to {to_currency}')

    logger.info('Converted %s %s to %s %s', amount, source, result, target)
    return result
