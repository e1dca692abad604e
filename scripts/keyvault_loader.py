"""
Load environment variables from Azure Key Vault, with optional per-user overrides.
Falls back to .env when Key Vault is not configured or a secret is missing.
"""
import logging
import os
from pathlib import Path

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Known env vars to fetch from Key Vault (in lookup order for per-user)
ENV_VARS = (
    "METADATA_DATABASE_URL",
    "API_AUTH_TOKEN",
    "DATASTORE_STAGING_MODE",
    "DATASTORE_CONNECT_TIMEOUT",
    "LOG_LEVEL",
)


def _env_to_secret_name(env_key: str) -> str:
    """Convert env var name to Key Vault secret name (underscores -> hyphens)."""
    return env_key.replace("_", "-")


def _load_from_dotenv() -> None:
    """Fill gaps from the first .env found in the working directory or the project root."""
    for base in (Path.cwd(), Path(__file__).resolve().parent.parent):
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return


def _load_from_keyvault(vault_name: str, user_name: str) -> None:
    url = f"https://{vault_name}.vault.azure.net/"
    client = SecretClient(vault_url=url, credential=DefaultAzureCredential())

    for var in ENV_VARS:
        if var in os.environ:
            continue  # Do not overwrite (CLI override)
        base_name = _env_to_secret_name(var)
        secret_names = [f"{base_name}-{user_name}", base_name] if user_name else [base_name]
        for name in secret_names:
            try:
                secret = client.get_secret(name)
            except AzureError as e:
                logger.debug(f"secret {name} not available from {vault_name}: {e}")
                continue
            if secret and secret.value:
                os.environ[var] = secret.value
                break


def load_env() -> None:
    """
    Load env vars from Azure Key Vault, then fill gaps from .env.
    - KEYVAULT_NAME: vault name (Key Vault is skipped when unset)
    - AZURE_USER_NAME: optional; use {VAR}-{USER} secrets first, then {VAR}
    - Does not overwrite existing os.environ values (allows CLI overrides)
    """
    _load_from_dotenv()
    vault_name = os.environ.get("KEYVAULT_NAME", "").strip()
    user_name = os.environ.get("AZURE_USER_NAME", "").strip().upper()
    if vault_name:
        _load_from_keyvault(vault_name, user_name)


def require_env(name: str) -> str:
    """Return a required setting. Raises RuntimeError if it is missing."""
    value = os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(f"{name} is not set (Key Vault or .env)")
    return value


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
