class KubeDrainError(Exception):
    """Base exception for KubeDrain."""

    pass


class MetricsQueryError(KubeDrainError):
    """Raised when the metrics store cannot answer a utilization query."""

    pass


class NodeInventoryError(KubeDrainError):
    """Raised when the live node inventory cannot be listed."""

    pass


class PodInventoryError(KubeDrainError):
    """Raised when pods cannot be listed for a cluster-wide maintenance task."""

    pass


class InstanceIdentityError(KubeDrainError):
    """Raised when a node's provider id does not map to a compute instance."""

    pass


class TerminationError(KubeDrainError):
    """Raised when the cloud provider refuses or fails an instance termination."""

    pass
