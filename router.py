# router.py

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from api_client import CompletionOptions, ProviderClient
from config import API_CONCURRENCY_LIMIT, LIGHTWEIGHT_TIMEOUT, PROVIDER_CHAIN
from exceptions import NoProviderAvailable, ProviderError, ProviderTimeout
from schemas import ProviderHandle
from utils import log

HEALTH_CHECK_PROMPT = 'Reply with the JSON object {"status": "ok"} and nothing else.'


@dataclass
class ProviderResult:
    provider: str
    text: str
    attempts: List[str] = field(default_factory=list)
    latency: float = 0.0


@dataclass
class ProviderStats:
    calls: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    total_latency: float = 0.0
    last_error: Optional[str] = None

    @property
    def average_latency(self) -> float:
        return self.total_latency / self.successes if self.successes else 0.0


class ProviderRouter:
    """
    Walks an ordered failover chain of provider clients.

    The chain is rotated to start at the template's preferred provider and
    wraps around; each provider is tried at most once per request, under a
    hard deadline. Timeouts and provider errors advance the chain and only
    surface once every configured provider has failed.
    """

    def __init__(self, clients: Dict[str, ProviderClient], chain: Sequence[str] = PROVIDER_CHAIN,
                 concurrency: int = API_CONCURRENCY_LIMIT):
        self.clients = clients
        self.chain = [name for name in chain if name in clients]
        self.chain += [name for name in clients if name not in self.chain]
        self.stats: Dict[str, ProviderStats] = {name: ProviderStats() for name in self.chain}
        self._semaphore = asyncio.Semaphore(concurrency)

    def handles(self) -> List[ProviderHandle]:
        return [self.clients[name].handle() for name in self.chain]

    def resolve(self, preference: Optional[str] = None, require_vision: bool = False,
                chain: Optional[Sequence[str]] = None) -> List[str]:
        base = [name for name in chain if name in self.clients] if chain else self.chain
        start = base.index(preference) if preference in base else 0
        rotated = base[start:] + base[:start]
        return [
            name for name in rotated
            if self.clients[name].is_configured and (self.clients[name].supports_vision or not require_vision)
        ]

    async def complete(self, prompt: str, options: CompletionOptions, preference: Optional[str] = None,
                       chain: Optional[Sequence[str]] = None) -> ProviderResult:
        order = self.resolve(preference, require_vision=options.has_image, chain=chain)
        if not order:
            if options.has_image and self.resolve(preference, chain=chain):
                raise NoProviderAvailable("No vision-capable AI service configured for scanned documents.")
            raise NoProviderAvailable()

        attempts = []
        last_error = None
        for name in order:
            client = self.clients[name]
            stats = self.stats[name]
            attempts.append(name)
            stats.calls += 1
            log.info(f"[router] Calling '{name}' (attempt {len(attempts)}/{len(order)}, deadline {options.timeout:g}s).")

            start_time = time.perf_counter()
            try:
                async with self._semaphore:
                    text = await asyncio.wait_for(client.complete(prompt, options), timeout=options.timeout)
            except asyncio.TimeoutError:
                last_error = ProviderTimeout(name, options.timeout)
                stats.timeouts += 1
            except ProviderError as e:
                last_error = e
            else:
                latency = time.perf_counter() - start_time
                stats.successes += 1
                stats.total_latency += latency
                return ProviderResult(provider=name, text=text, attempts=attempts, latency=latency)

            stats.failures += 1
            stats.last_error = last_error.message
            log.warning(f"[router] {last_error.message}. Advancing to next provider.")

        log.error(f"[router] All providers failed: {attempts}.")
        raise last_error

    def status(self) -> List[dict]:
        entries = []
        for position, name in enumerate(self.chain):
            client = self.clients[name]
            stats = self.stats[name]
            entries.append({
                "name": name,
                "model": client.model,
                "configured": client.is_configured,
                "supportsVision": client.supports_vision,
                "chainPosition": position,
                "calls": stats.calls,
                "successes": stats.successes,
                "failures": stats.failures,
                "timeouts": stats.timeouts,
                "averageLatency": round(stats.average_latency, 3),
                "lastError": stats.last_error,
            })
        return entries

    async def _check_one(self, name: str) -> dict:
        options = CompletionOptions(max_tokens=20, timeout=LIGHTWEIGHT_TIMEOUT)
        start_time = time.perf_counter()
        try:
            await asyncio.wait_for(self.clients[name].complete(HEALTH_CHECK_PROMPT, options), timeout=options.timeout)
        except asyncio.TimeoutError:
            return {"name": name, "healthy": False, "error": ProviderTimeout(name, options.timeout).message}
        except ProviderError as e:
            return {"name": name, "healthy": False, "error": e.message}
        return {"name": name, "healthy": True, "latency": round(time.perf_counter() - start_time, 3)}

    async def health_check(self) -> List[dict]:
        configured = [name for name in self.chain if self.clients[name].is_configured]
        results = await asyncio.gather(*(self._check_one(name) for name in configured))
        unconfigured = [{"name": name, "healthy": False, "error": "not configured"}
                        for name in self.chain if name not in configured]
        return list(results) + unconfigured

    async def close(self):
        for client in self.clients.values():
            await client.close()
