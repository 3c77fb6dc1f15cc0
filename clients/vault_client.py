"""
Secrets for the marketplace services, read from HashiCorp Vault.

Bootstrap is environment-only (VAULT_ADDR, VAULT_ROLE_ID, VAULT_SECRET_ID,
optional VAULT_NAMESPACE); everything else lives in KV v2 under the
'marketplace/' mount path:

    marketplace/database   url
    marketplace/valkey     url
    marketplace/pricing    tax_rate_bps, invoice_due_days, ... (optional)

Misconfiguration is fatal at startup rather than at first checkout.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

SECRET_ROOT = "marketplace"

_shared_client: "VaultClient | None" = None
_cache: Dict[str, Dict[str, str]] = {}


class VaultClient:
    """KV v2 reader authenticated with AppRole."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
    ):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        self.client = hvac.Client(url=self.vault_addr, namespace=namespace or None)
        self._login(role_id, secret_id)

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info(f"Vault client ready at {self.vault_addr}")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except Exception as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")
        self.client.token = response["auth"]["client_token"]

    def read_secret(self, path: str, missing_ok: bool = False) -> Dict[str, str]:
        """
        All fields of marketplace/<path>, or {} if it is absent and missing_ok.

        Raises:
            PermissionError: Path missing or not readable with this role.
        """
        full_path = f"{SECRET_ROOT}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            if missing_ok:
                return {}
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")

        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        One field of marketplace/<path>.

        Raises:
            PermissionError: Path missing or not readable.
            KeyError: Field not present; the message lists what is.
        """
        data = self.read_secret(path)
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{SECRET_ROOT}/{path}'. "
                f"Available: {', '.join(sorted(data))}"
            )
        return data[field]


def _client() -> VaultClient:
    global _shared_client
    if _shared_client is None:
        _shared_client = VaultClient()
    return _shared_client


def _secret(path: str, missing_ok: bool = False) -> Dict[str, str]:
    if path not in _cache:
        _cache[path] = _client().read_secret(path, missing_ok=missing_ok)
    return _cache[path]


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return _secret("database")["url"]


def get_valkey_url() -> str:
    """Valkey URL backing the per-day document number sequences."""
    return _secret("valkey")["url"]


def get_pricing_settings() -> Dict[str, str]:
    """
    Deployment overrides for PricingConfig, or {} when none are stored.

    Values arrive as strings; PricingConfig coerces and validates them.
    """
    settings = dict(_secret("pricing", missing_ok=True))
    if not settings:
        logger.info("No pricing overrides in Vault, using defaults")
    return settings
