import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

LIVE_API_BASE = "https://app.paydunya.com/api/v1"
SANDBOX_API_BASE = "https://app.paydunya.com/sandbox-api/v1"

DEFAULT_RESOURCES = ("BOOK_PART_2", "BOOK_PART_3")

REQUIRED_KEYS = ("PAYDUNYA_MASTER_KEY", "PAYDUNYA_PRIVATE_KEY", "PAYDUNYA_TOKEN")


class ConfigurationError(RuntimeError):
    """Raised when the provider configuration is missing or unreadable."""


@dataclass(frozen=True)
class Settings:
    paydunya_master_key: str
    paydunya_private_key: str
    paydunya_token: str
    paydunya_mode: str = "test"
    merchant_name: str = "AT-TAQWA"
    base_url: str = "http://localhost:3001"
    provider_timeout: float = 10.0
    jwt_secret: Optional[str] = None
    default_resources: Tuple[str, ...] = DEFAULT_RESOURCES
    plan_resources: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def api_base(self) -> str:
        return LIVE_API_BASE if self.paydunya_mode == "live" else SANDBOX_API_BASE

    def resources_for(self, plan_id: str) -> Tuple[str, ...]:
        return self.plan_resources.get(plan_id, self.default_resources)


def _parse_plan_resources(raw: str) -> Dict[str, Tuple[str, ...]]:
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"PLAN_RESOURCES is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("PLAN_RESOURCES must be a JSON object")
    plans = {}
    for plan, resources in data.items():
        if not isinstance(resources, list) or not all(
            isinstance(r, str) and r.strip() for r in resources
        ):
            raise ConfigurationError(
                f"PLAN_RESOURCES[{plan!r}] must be a list of non-empty resource ids"
            )
        plans[str(plan)] = tuple(r.strip() for r in resources)
    return plans


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment.

    Every missing provider key is reported at once so a broken deployment
    can be fixed in a single pass.
    """
    env = os.environ if env is None else env

    missing = [key for key in REQUIRED_KEYS if not env.get(key)]
    if missing:
        raise ConfigurationError(f"PayDunya keys missing: {', '.join(missing)}")

    try:
        timeout = float(env.get("PAYDUNYA_TIMEOUT", "10"))
    except ValueError as exc:
        raise ConfigurationError("PAYDUNYA_TIMEOUT must be a number of seconds") from exc

    default_resources = DEFAULT_RESOURCES
    if env.get("DEFAULT_RESOURCES"):
        default_resources = tuple(
            r.strip() for r in env["DEFAULT_RESOURCES"].split(",") if r.strip()
        )

    plan_resources = {}
    if env.get("PLAN_RESOURCES"):
        plan_resources = _parse_plan_resources(env["PLAN_RESOURCES"])

    return Settings(
        paydunya_master_key=env["PAYDUNYA_MASTER_KEY"],
        paydunya_private_key=env["PAYDUNYA_PRIVATE_KEY"],
        paydunya_token=env["PAYDUNYA_TOKEN"],
        paydunya_mode=env.get("PAYDUNYA_MODE", "test"),
        merchant_name=env.get("PAYDUNYA_MERCHANT_NAME") or "AT-TAQWA",
        base_url=env.get("BASE_URL") or "http://localhost:3001",
        provider_timeout=timeout,
        jwt_secret=env.get("JWT_SECRET"),
        default_resources=default_resources,
        plan_resources=plan_resources,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
