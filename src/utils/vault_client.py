"""
Vault Client for the Telemetry Pipeline

Optional secret source for store and bus passwords. It is consulted only
when a password is neither part of a connection URL nor given through the
environment, and VAULT_ADDR/VAULT_TOKEN are set.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

import hvac
from hvac.exceptions import InvalidPath, VaultError

logger = logging.getLogger(__name__)

# Secret path per credential owner
SECRET_PATHS = {
    "store": "telemetry-store-credentials",
    "destination": "telemetry-dest-credentials",
    "bus": "telemetry-bus-credentials",
}


class VaultClient:
    """Reads credentials from a KV v2 secrets engine."""

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Initialize Vault client.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault authentication token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV secrets engine mount point

        Raises:
            ValueError: If URL or token is missing
            VaultError: If authentication fails
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")
        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        self.client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)
        if not self.client.is_authenticated():
            raise VaultError("Failed to authenticate with Vault")
        logger.info(f"Connected to Vault at {self.vault_url}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Retrieve a secret.

        Raises:
            InvalidPath: If nothing is stored at path
        """
        logger.debug(f"Retrieving secret {self.mount_point}/data/{path}")
        response = self.client.secrets.kv.v2.read_secret_version(
            path=path,
            mount_point=self.mount_point
        )
        if not response or "data" not in response:
            raise InvalidPath(f"No data found at path: {path}")
        return response["data"].get("data", {})

    def get_password(self, owner: str) -> Optional[str]:
        """
        Password stored for a credential owner ('store', 'destination', 'bus').

        Raises:
            ValueError: If owner is unknown
        """
        if owner not in SECRET_PATHS:
            raise ValueError(f"Invalid credential owner: {owner}. Must be one of {list(SECRET_PATHS)}")
        return self.get_secret(SECRET_PATHS[owner]).get("password")

    def close(self):
        self.client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def resolve_password(
    owner: str,
    password: Optional[str],
    environ: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """
    Return ``password`` or, if unset and Vault is configured, the stored one.

    A missing secret is not an error: the store may accept passwordless
    connections. Vault failures propagate.
    """
    if password:
        return password
    env = os.environ if environ is None else environ
    if not env.get("VAULT_ADDR") or not env.get("VAULT_TOKEN"):
        return None

    with VaultClient(env["VAULT_ADDR"], env["VAULT_TOKEN"]) as vault:
        try:
            return vault.get_password(owner)
        except InvalidPath:
            logger.warning(f"No {owner} credentials stored in Vault")
            return None
