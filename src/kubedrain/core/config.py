# src/kubedrain/core/config.py

import logging
import os

from dotenv import load_dotenv

# Load environment variables from a .env file located in the project root
dotenv_path = os.path.join(os.path.dirname(__file__), "..", "..", "..", ".env")
load_dotenv(dotenv_path=dotenv_path)

_TRUTHY = ("true", "1", "t", "y", "yes")

SUPPORTED_RESOURCES = ("disk", "memory")
SUPPORTED_IDENTITY_MODES = ("address", "node_label")
SUPPORTED_MATCH_STRATEGIES = ("substring", "exact")


def _get_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() in _TRUTHY


def _get_list(key: str, default: str = "") -> list:
    """Splits a comma separated variable, dropping blank entries."""
    raw = os.getenv(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """
    Handles the application's configuration by loading values from environment variables.

    A single instance is built at startup and handed to every component; nothing
    below the CLI reads the environment on its own.
    """

    def __init__(self):
        # -- Prometheus secrets ---
        self.PROMETHEUS_BEARER_TOKEN = self._get_secret("PROMETHEUS_BEARER_TOKEN")
        self.PROMETHEUS_USERNAME = self._get_secret("PROMETHEUS_USERNAME")
        self.PROMETHEUS_PASSWORD = self._get_secret("PROMETHEUS_PASSWORD")
        self.PROMETHEUS_SCOPE_ORG_ID = self._get_secret("PROMETHEUS_SCOPE_ORG_ID")

        # --- Logging variables ---
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # -- Prometheus variables ---
        self.PROMETHEUS_URL = os.getenv("PROMETHEUS_URL", "http://localhost:9090")
        self.PROMETHEUS_VERIFY_CERTS = _get_bool("PROMETHEUS_VERIFY_CERTS", "True")
        self.PROMETHEUS_QUERY_TIMEOUT_SECONDS = float(os.getenv("PROMETHEUS_QUERY_TIMEOUT_SECONDS", "30"))
        # 'address' strips the port from an "ip:port" label, 'node_label' uses the value as-is.
        self.PROMETHEUS_IDENTITY_MODE = os.getenv("PROMETHEUS_IDENTITY_MODE", "address").lower()
        self.PROMETHEUS_IDENTITY_LABEL = os.getenv("PROMETHEUS_IDENTITY_LABEL", "instance")

        # --- Node selection variables ---
        self.DRAIN_RESOURCE = os.getenv("DRAIN_RESOURCE", "disk").lower()
        self.DRAIN_THRESHOLD_PERCENTAGE = float(os.getenv("DRAIN_THRESHOLD_PERCENTAGE", "70"))
        self.DRAIN_NODE_LABELS = _get_list("DRAIN_NODE_LABELS")
        self.NODE_POOL_LABEL = os.getenv("NODE_POOL_LABEL", "karpenter.sh/nodepool")
        self.NODE_ADDRESS_ANNOTATION = os.getenv("NODE_ADDRESS_ANNOTATION", "alpha.kubernetes.io/provided-node-ip")
        self.NODE_MATCH_STRATEGY = os.getenv("NODE_MATCH_STRATEGY", "substring").lower()

        # --- Pod protection variables ---
        self.CRITICAL_NAMESPACES = _get_list("CRITICAL_NAMESPACES", "kube-system")
        self.CRITICAL_POD_ANNOTATIONS = _get_list(
            "CRITICAL_POD_ANNOTATIONS", "scheduler.alpha.kubernetes.io/critical-pod"
        )
        self.DRAIN_STRICT_MODE = _get_bool("DRAIN_STRICT_MODE", "False")
        self.PROTECTED_PODS_BLOCK_TERMINATION = _get_bool("PROTECTED_PODS_BLOCK_TERMINATION", "True")

        # --- Drain timing variables ---
        self.DRAIN_TIMEOUT_SECONDS = float(os.getenv("DRAIN_TIMEOUT_SECONDS", "600"))
        self.DRAIN_POLL_INTERVAL_SECONDS = float(os.getenv("DRAIN_POLL_INTERVAL_SECONDS", "5"))
        self.DRAIN_GRACE_PERIOD_SECONDS = int(os.getenv("DRAIN_GRACE_PERIOD_SECONDS", "60"))
        self.DRAIN_DELETE_INTERVAL_SECONDS = float(os.getenv("DRAIN_DELETE_INTERVAL_SECONDS", "0.05"))
        # Time given to the kubelet to be considered gone before the instance is terminated.
        self.DRAIN_SETTLE_SECONDS = float(os.getenv("DRAIN_SETTLE_SECONDS", "60"))
        self.DRAIN_MAX_PARALLEL_NODES = int(os.getenv("DRAIN_MAX_PARALLEL_NODES", "1"))
        self.DRAIN_USE_EVICTION_API = _get_bool("DRAIN_USE_EVICTION_API", "False")
        self.DRAIN_FORCE_ON_DISRUPTION_BLOCK = _get_bool("DRAIN_FORCE_ON_DISRUPTION_BLOCK", "False")
        self.K8S_API_TIMEOUT_SECONDS = float(os.getenv("K8S_API_TIMEOUT_SECONDS", "30"))

        # --- Cloud variables ---
        self.AWS_REGION = os.getenv("AWS_REGION", "ap-northeast-2")

        # --- Periodic mode ---
        self.DRAIN_INTERVAL = os.getenv("DRAIN_INTERVAL", "10m")

    @staticmethod
    def _get_secret(key: str, default: str = None) -> str:
        """
        Retrieves a secret from a file (Docker secret/volume) or falls back to environment variable.

        Raises:
            PermissionError: If the secret file exists but cannot be read due to permissions.
            IOError: If the secret file exists but cannot be read due to I/O errors.
        """
        secret_file = f"/etc/kubedrain/secrets/{key}"
        if os.path.exists(secret_file):
            try:
                with open(secret_file, "r") as f:
                    value = f.read().strip()
                    logging.getLogger(__name__).debug(f"Loaded secret '{key}' from {secret_file}")
                    return value
            except PermissionError as e:
                raise PermissionError(
                    f"Secret file '{secret_file}' exists but cannot be read due to permission denied. "
                    f"Please check file permissions or run with appropriate privileges."
                ) from e
            except (IOError, OSError) as e:
                raise IOError(
                    f"Secret file '{secret_file}' exists but cannot be read: {e}. "
                    f"Please check the file integrity and system resources."
                ) from e
        return os.getenv(key, default)

    def validate_instance(self):
        if self.DRAIN_RESOURCE not in SUPPORTED_RESOURCES:
            raise ValueError(f"DRAIN_RESOURCE must be one of {', '.join(SUPPORTED_RESOURCES)}")
        if self.PROMETHEUS_IDENTITY_MODE not in SUPPORTED_IDENTITY_MODES:
            raise ValueError(f"PROMETHEUS_IDENTITY_MODE must be one of {', '.join(SUPPORTED_IDENTITY_MODES)}")
        if self.NODE_MATCH_STRATEGY not in SUPPORTED_MATCH_STRATEGIES:
            raise ValueError(f"NODE_MATCH_STRATEGY must be one of {', '.join(SUPPORTED_MATCH_STRATEGIES)}")
        if not 0 <= self.DRAIN_THRESHOLD_PERCENTAGE <= 100:
            raise ValueError("DRAIN_THRESHOLD_PERCENTAGE must be between 0 and 100.")
        for name in (
            "PROMETHEUS_QUERY_TIMEOUT_SECONDS",
            "DRAIN_TIMEOUT_SECONDS",
            "DRAIN_POLL_INTERVAL_SECONDS",
            "K8S_API_TIMEOUT_SECONDS",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive.")
        if self.DRAIN_GRACE_PERIOD_SECONDS < 0:
            raise ValueError("DRAIN_GRACE_PERIOD_SECONDS must not be negative.")
        if self.DRAIN_MAX_PARALLEL_NODES < 1:
            raise ValueError("DRAIN_MAX_PARALLEL_NODES must be at least 1.")
        if not self.DRAIN_NODE_LABELS:
            logging.warning("DRAIN_NODE_LABELS is not set; no node will ever be selected for draining.")


# Instantiate the config to be imported by the CLI
config = Config()
config.validate_instance()
