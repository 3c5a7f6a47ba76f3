"""Bounded polling for custom-domain verification."""
import asyncio

from wisp.services.hosting import HostingProvisioner
from wisp.utils.exceptions import ExternalServiceError
from wisp.utils.logger import logger
from wisp.utils.retry import Sleep


async def poll_until_verified(
    hosting: HostingProvisioner,
    hosting_project_id: str,
    domain_prefix: str,
    max_attempts: int = 10,
    interval: float = 2.0,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """
    Check domain verification up to ``max_attempts`` times, ``interval`` seconds apart.

    The interval is fixed, not exponential. A failed check call counts as
    "not verified yet".

    Returns:
        True once the domain verifies, False when the attempts run out
    """
    for attempt in range(1, max_attempts + 1):
        try:
            if await hosting.verify_domain(hosting_project_id, domain_prefix):
                logger.info(f"[VERCEL] Domain {domain_prefix} verified on attempt {attempt}")
                return True
        except ExternalServiceError as e:
            logger.warning(f"[VERCEL] Verification check {attempt}/{max_attempts} errored: {e}")

        if attempt < max_attempts:
            await sleep(interval)

    logger.warning(f"[VERCEL] Domain {domain_prefix} not verified after {max_attempts} attempts")
    return False
