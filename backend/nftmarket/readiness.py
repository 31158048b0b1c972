"""Readiness checks: config, packages, database, signing gateway, ledger node."""
import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from nftmarket.infra.db.base import (
    async_pg_connect_args,
    async_pg_url_without_sslmode,
    normalize_async_pg_url,
)

logger = logging.getLogger(__name__)

# Result: (passed: bool, message: str)
CheckResult = tuple[bool, str]
ChecksDict = dict[str, CheckResult]

REQUIRED_CHECKS = {"config", "packages", "database"}


def check_config() -> CheckResult:
    """Load settings and read the values the service can't start without."""
    try:
        from nftmarket.settings import get_settings
        s = get_settings()
        _ = s.app_name
        _ = s.database_url
        _ = s.ledger_rpc_url
        if s.listing_cache_ttl_seconds <= 0:
            return False, "LISTING_CACHE_TTL_SECONDS must be positive"
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_packages() -> CheckResult:
    """Import critical modules: uvicorn, sqlalchemy, httpx, nftmarket.main."""
    missing = []
    try:
        import uvicorn  # noqa: F401
    except ImportError:
        missing.append("uvicorn")
    try:
        import sqlalchemy  # noqa: F401
    except ImportError:
        missing.append("sqlalchemy")
    try:
        import httpx  # noqa: F401
    except ImportError:
        missing.append("httpx")
    try:
        import nftmarket.main  # noqa: F401
    except ImportError as e:
        missing.append(f"nftmarket.main ({e})")
    if missing:
        return False, f"missing: {', '.join(missing)}"
    return True, "ok"


async def _check_database_async(database_url: str) -> CheckResult:
    """Run a trivial query against the database."""
    try:
        url = normalize_async_pg_url(database_url)
        engine = create_async_engine(
            async_pg_url_without_sslmode(url),
            connect_args=async_pg_connect_args(url),
            pool_pre_ping=True,
        )
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        await engine.dispose()
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_database() -> CheckResult:
    """Check database connectivity using settings.database_url."""
    try:
        from nftmarket.settings import get_settings
        url = get_settings().database_url
        return asyncio.run(_check_database_async(url))
    except Exception as e:
        return False, str(e)


def check_gateway() -> CheckResult:
    """Signing gateway credentials and payment destination are set."""
    from nftmarket.settings import get_settings
    s = get_settings()
    if not s.xumm_api_key or not s.xumm_api_secret:
        return False, "XUMM_API_KEY / XUMM_API_SECRET not set"
    if not s.pay_destination:
        return False, "PAY_DESTINATION not set"
    return True, "ok"


async def _check_ledger_async() -> CheckResult:
    """server_info round-trip against the ledger node."""
    try:
        from nftmarket.infra.vendors.ledger_client import LedgerClient
        info = await LedgerClient().server_info()
        state = (info or {}).get("info", {}).get("server_state")
        return True, "ok" if state in (None, "full", "proposing", "validating") else f"server_state {state}"
    except Exception as e:
        return False, str(e)


def check_ledger() -> CheckResult:
    try:
        return asyncio.run(_check_ledger_async())
    except Exception as e:
        return False, str(e)


def run_all_checks() -> ChecksDict:
    """Run all readiness checks (sync). Returns dict of check_name -> (passed, message)."""
    return {
        "config": check_config(),
        "packages": check_packages(),
        "database": check_database(),
        "gateway": check_gateway(),
        "ledger": check_ledger(),
    }


async def run_all_checks_async() -> ChecksDict:
    """Run all readiness checks (async). Use from async context (e.g. GET /ready) to avoid nested event loop."""
    from nftmarket.settings import get_settings
    db_url = get_settings().database_url
    db_result, ledger_result = await asyncio.gather(
        _check_database_async(db_url),
        _check_ledger_async(),
    )
    return {
        "config": check_config(),
        "packages": check_packages(),
        "database": db_result,
        "gateway": check_gateway(),
        "ledger": ledger_result,
    }


def is_ready(checks: ChecksDict | None = None) -> tuple[bool, dict[str, str]]:
    """
    True if all required checks pass. Gateway and ledger are reported but not required:
    the catalog keeps serving while they are down.
    Returns (ready: bool, checks_summary: dict of name -> "ok" | error message).
    """
    if checks is None:
        checks = run_all_checks()
    summary: dict[str, str] = {name: msg for name, (_passed, msg) in checks.items()}
    all_required = all(checks[n][0] for n in REQUIRED_CHECKS if n in checks)
    return all_required, summary
