# src/kubedrain/core/terminator.py
"""
Hands a drained node off for decommission by terminating its EC2 instance.
"""

import asyncio
import logging
import re
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InstanceIdentityError, TerminationError

logger = logging.getLogger(__name__)

INSTANCE_ID_PATTERN = re.compile(r"^i-[0-9a-f]{8,17}$")


def resolve_instance_id(provider_id: Optional[str]) -> str:
    """
    Extracts the EC2 instance id from a node's providerID.

    ``aws:///ap-northeast-2a/i-0123456789abcdef0`` -> ``i-0123456789abcdef0``

    Raises:
        InstanceIdentityError: if the provider id is missing, not an AWS id, or
            does not end in a well-formed instance id.
    """
    if not provider_id:
        raise InstanceIdentityError("Node has no providerID.")
    if not provider_id.startswith("aws://"):
        raise InstanceIdentityError(f"Unsupported providerID '{provider_id}': only aws:// ids are supported.")

    instance_id = provider_id.rstrip("/").split("/")[-1]
    if not INSTANCE_ID_PATTERN.match(instance_id):
        raise InstanceIdentityError(f"Malformed instance id '{instance_id}' in providerID '{provider_id}'.")
    return instance_id


class InstanceTerminator:
    """
    Single-call boundary to EC2. Errors are raised verbatim as TerminationError.
    """

    def __init__(self, region: str, ec2_client=None):
        self.region = region
        self._ec2 = ec2_client

    def _ensure_client(self):
        if self._ec2 is None:
            self._ec2 = boto3.client("ec2", region_name=self.region)
        return self._ec2

    async def terminate(self, instance_id: str) -> None:
        logger.info("Terminating instance %s in %s", instance_id, self.region)
        ec2 = self._ensure_client()
        try:
            # boto3 is blocking; keep the event loop free for the other nodes.
            await asyncio.to_thread(ec2.terminate_instances, InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            raise TerminationError(str(e)) from e
        logger.info("Successfully requested termination of instance %s", instance_id)
