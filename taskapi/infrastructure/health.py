import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Tuple


class HealthChecker:
    """Runs registered liveness checks; a check passes when it returns truthy."""

    def __init__(self):
        self.checks: Dict[str, Callable] = {}

    def register_check(self, name: str, check_func: Callable):
        self.checks[name] = check_func

    async def run_checks(self) -> Dict:
        results = {}
        if self.checks:
            check_results = await asyncio.gather(
                *(self._run_single_check(name, func) for name, func in self.checks.items())
            )
            for name, result in check_results:
                results[name] = result

        all_healthy = all(r.get("status") == "ok" for r in results.values())
        return {
            "status": "ok" if all_healthy else "unhealthy",
            "checks": results,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def _run_single_check(self, name: str, check_func: Callable) -> Tuple[str, Dict]:
        start = time.monotonic()
        try:
            if asyncio.iscoroutinefunction(check_func):
                result = await check_func()
            else:
                result = await asyncio.to_thread(check_func)
        except Exception as e:
            return name, {
                "status": "unhealthy",
                "error": str(e),
                "duration_ms": int((time.monotonic() - start) * 1000),
            }

        return name, {
            "status": "ok" if result else "unhealthy",
            "duration_ms": int((time.monotonic() - start) * 1000),
        }
