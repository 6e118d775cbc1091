# file: aqi_pipeline/waqi_api.py

import aiohttp
import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any, Callable, Awaitable, Optional, Union
import logging
from tqdm.asyncio import tqdm
import certifi
import ssl

from aqi_pipeline.config import PipelineConfig
from aqi_pipeline.retry import RetryMachine, RetryState

Sleep = Callable[[float], Awaitable[Any]]


class FetchFailureKind(str, Enum):
    CLIENT_ERROR = "client_error"
    EXHAUSTED = "exhausted"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class FetchFailure:
    """Why a station produced no payload this round."""
    station_id: str
    kind: FetchFailureKind
    message: str
    status: Optional[int] = None
    attempts: int = 0


def build_ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def create_session(config: PipelineConfig) -> aiohttp.ClientSession:
    """Client session for the WAQI API: certifi CA bundle, timeout and user agent."""
    return aiohttp.ClientSession(
        connector=aiohttp.TCPConnector(ssl=build_ssl_context()),
        timeout=aiohttp.ClientTimeout(total=config.waqi.timeout_seconds),
        headers={"User-Agent": config.waqi.user_agent},
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; None when absent or not a number."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def station_url(config: PipelineConfig, station_id: str) -> str:
    return f"{config.waqi.base_url.rstrip('/')}/feed/@{station_id}/"


async def fetch_station(session: aiohttp.ClientSession,
                        station_id: str,
                        config: PipelineConfig,
                        sleep: Sleep = asyncio.sleep,
                        rand: Callable[[], float] = random.random) -> Union[Dict[str, Any], FetchFailure]:
    """Fetch one station feed, retrying 5xx/network errors and waiting out 429s."""
    if not config.waqi.token:
        return FetchFailure(station_id, FetchFailureKind.CLIENT_ERROR, "WAQI token not configured")

    machine = RetryMachine(config.retry, rand=rand)
    url = station_url(config, station_id)

    while True:
        wait = None
        data = None
        try:
            async with session.get(url, params={"token": config.waqi.token}) as response:
                if response.status == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    wait = machine.throttle(retry_after)
                    if wait is not None:
                        logging.warning(f"WAQI rate limited for station {station_id}, waiting {wait:.0f}s")
                elif response.status >= 500:
                    logging.error(f"WAQI server error for station {station_id}: HTTP {response.status} "
                                  f"(attempt {machine.attempt + 1})")
                    wait = machine.fail(f"HTTP {response.status}")
                elif response.status >= 400:
                    logging.error(f"WAQI client error for station {station_id}: HTTP {response.status} - not retrying")
                    return FetchFailure(station_id, FetchFailureKind.CLIENT_ERROR,
                                        f"HTTP {response.status}", status=response.status,
                                        attempts=machine.attempt + 1)
                else:
                    data = await response.json(content_type=None)
                    if isinstance(data, dict):
                        machine.succeed()
                    else:
                        logging.error(f"Invalid WAQI response structure for station {station_id}")
                        wait = machine.fail("invalid response structure")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.error(f"WAQI fetch error for station {station_id} (attempt {machine.attempt + 1}): {e}")
            wait = machine.fail(str(e))

        if machine.state is RetryState.SUCCEEDED:
            return data
        if machine.state is RetryState.EXHAUSTED:
            kind = FetchFailureKind.RATE_LIMITED if machine.rate_limited else FetchFailureKind.EXHAUSTED
            logging.error(f"WAQI fetch failed for station {station_id} after {machine.attempt} attempts: "
                          f"{machine.last_error}")
            return FetchFailure(station_id, kind, machine.last_error or "retries exhausted",
                                attempts=machine.attempt)

        if machine.state is RetryState.BACKING_OFF:
            logging.warning(f"WAQI retry {machine.attempt}/{config.retry.max_retries} for station {station_id} "
                            f"after {wait:.2f}s")
        await sleep(wait)
        machine.resume()


async def fetch_stations(session: aiohttp.ClientSession,
                         station_ids: List[str],
                         config: PipelineConfig,
                         sleep: Sleep = asyncio.sleep,
                         label: str = "stations") -> Dict[str, Dict[str, Any]]:
    """
    Fetch many stations in fixed-size concurrent windows.

    Each window of config.batch_size requests runs concurrently and must finish
    before the next starts; config.batch_delay separates windows (not after the
    last). Returns only the stations that produced a payload.
    """
    results: Dict[str, Dict[str, Any]] = {}
    size = max(1, config.batch_size)
    batches = [station_ids[i:i + size] for i in range(0, len(station_ids), size)]

    with tqdm(total=len(station_ids), desc=f"Fetching {label}", disable=not config.show_progress) as pbar:
        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(
                *(fetch_station(session, station_id, config, sleep=sleep) for station_id in batch),
                return_exceptions=True,
            )
            for station_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, FetchFailure):
                    logging.warning(f"No data for station {station_id} this round ({outcome.kind.value}: "
                                    f"{outcome.message})")
                elif isinstance(outcome, BaseException):
                    logging.error(f"Unexpected error fetching station {station_id}: {outcome}")
                else:
                    results[station_id] = outcome
            pbar.update(len(batch))

            if index < len(batches) - 1:
                await sleep(config.batch_delay)

    return results
