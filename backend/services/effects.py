"""
Peripheral effects.

A peripheral effect (invoice generation after a transition, an email) must
never undo or fail the core mutation that triggered it. run_peripheral()
awaits the effect, logs any failure and hands back an EffectResult that the
caller attaches to its own result.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


@dataclass
class EffectResult:
    name: str
    ok: bool
    error: Optional[str] = None
    value: Any = None

    def as_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "error": self.error}


async def run_peripheral(name: str, awaitable: Awaitable[Any]) -> EffectResult:
    try:
        value = await awaitable
    except Exception as e:
        logger.error(f"Peripheral effect '{name}' failed: {e}", exc_info=True)
        return EffectResult(name=name, ok=False, error=str(e) or e.__class__.__name__)

    # Notifier methods report delivery as a bool instead of raising
    if value is False:
        logger.warning(f"Peripheral effect '{name}' reported failure")
        return EffectResult(name=name, ok=False, error="not delivered")
    return EffectResult(name=name, ok=True, value=value)
