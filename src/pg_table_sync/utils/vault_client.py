"""
HashiCorp Vault client for fetching connection strings

Reads the source and target database secrets from the KV v2 secrets engine.
A secret either carries a ready ``dsn`` field or the individual
host/port/database/username/password fields.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import requests
from psycopg2.extensions import make_dsn

logger = logging.getLogger(__name__)

SECRET_PATHS = {
    "source": "secret/database/source",
    "target": "secret/database/target",
}

REQUIRED_FIELDS = ["host", "database", "username", "password"]


class VaultClient:
    """
    HashiCorp Vault client for secrets management

    Uses the KV v2 secrets engine.
    """

    def __init__(
        self,
        vault_addr: Optional[str] = None,
        vault_token: Optional[str] = None,
        namespace: Optional[str] = None,
        timeout: float = 10,
    ):
        """
        Initialize Vault client

        Args:
            vault_addr: Vault server address (default: from VAULT_ADDR env var)
            vault_token: Vault authentication token (default: from VAULT_TOKEN env var)
            namespace: Vault namespace (optional, for Vault Enterprise)
            timeout: HTTP timeout in seconds

        Raises:
            ValueError: If vault_addr or vault_token are not provided
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.namespace = namespace
        self.timeout = timeout

        if not self.vault_addr:
            raise ValueError(
                "Vault address not provided. Set VAULT_ADDR environment variable "
                "or pass vault_addr parameter."
            )

        if not self.vault_token:
            raise ValueError(
                "Vault token not provided. Set VAULT_TOKEN environment variable "
                "or pass vault_token parameter."
            )

        self.vault_addr = self.vault_addr.rstrip("/")

        self.headers = {
            "X-Vault-Token": self.vault_token,
            "Content-Type": "application/json",
        }
        if self.namespace:
            self.headers["X-Vault-Namespace"] = self.namespace

        logger.debug(f"Initialized Vault client for {self.vault_addr}")

    def get_secret(self, secret_path: str) -> Dict[str, Any]:
        """
        Fetch secret from Vault KV v2 secrets engine

        Args:
            secret_path: Path to secret (e.g., "secret/database/source")

        Returns:
            Dictionary containing secret data

        Raises:
            ValueError: If secret_path is invalid or the secret is missing/empty
            requests.RequestException: If the Vault request fails
        """
        if not secret_path or not isinstance(secret_path, str):
            raise ValueError("secret_path must be a non-empty string")

        if ".." in secret_path or secret_path.startswith("//"):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Path traversal attempts are not allowed."
            )

        if not re.match(r"^[a-zA-Z0-9/_-]+$", secret_path):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Only alphanumeric characters, slashes, underscores, and hyphens are allowed."
            )

        # KV v2 requires /data/ after the mount point
        if "/data/" not in secret_path:
            mount, _, rest = secret_path.partition("/")
            secret_path = f"{mount}/data/{rest}" if rest else f"{mount}/data"

        url = f"{self.vault_addr}/v1/{secret_path}"
        logger.debug(f"Fetching secret from: {url}")

        response = requests.get(url, headers=self.headers, timeout=self.timeout)

        if response.status_code == 404:
            raise ValueError(f"Secret not found at path: {secret_path}")

        response.raise_for_status()

        secret_data = response.json().get("data", {}).get("data", {})
        if not secret_data:
            raise ValueError(f"No data found in secret at path: {secret_path}")

        return secret_data

    def get_connection_string(self, side: str) -> str:
        """
        Fetch the connection string for one side of a run

        Args:
            side: "source" or "target"

        Returns:
            libpq connection string

        Raises:
            ValueError: If side is unknown or the secret lacks required fields
        """
        if side not in SECRET_PATHS:
            raise ValueError(f"Unsupported side: {side}. Must be 'source' or 'target'.")

        secret_data = self.get_secret(SECRET_PATHS[side])

        if secret_data.get("dsn"):
            logger.info(f"Fetched {side} connection string from Vault")
            return secret_data["dsn"]

        missing_fields = [field for field in REQUIRED_FIELDS if field not in secret_data]
        if missing_fields:
            raise ValueError(
                f"Missing required fields in {side} secret: {', '.join(missing_fields)}"
            )

        logger.info(f"Fetched {side} credentials from Vault")

        return make_dsn(
            host=secret_data["host"],
            port=secret_data.get("port", 5432),
            dbname=secret_data["database"],
            user=secret_data["username"],
            password=secret_data["password"],
        )

    def health_check(self) -> bool:
        """
        Check if Vault is accessible and unsealed

        Returns:
            True if Vault is healthy, False otherwise
        """
        url = f"{self.vault_addr}/v1/sys/health"

        try:
            response = requests.get(url, timeout=5)
            # 200 active, 429 standby, 472 DR secondary, 473 performance standby
            return response.status_code in [200, 429, 472, 473]
        except requests.RequestException as e:
            logger.error(f"Vault health check failed: {e}")
            return False
