# tests/core/test_terminator.py

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from kubedrain.core.exceptions import InstanceIdentityError, TerminationError
from kubedrain.core.terminator import InstanceTerminator, resolve_instance_id


def test_resolve_instance_id_from_aws_provider_id():
    assert resolve_instance_id("aws:///ap-northeast-2a/i-0123456789abcdef0") == "i-0123456789abcdef0"


@pytest.mark.parametrize(
    "provider_id",
    [
        None,
        "",
        "gce://project/zone/instance-1",
        "aws:///ap-northeast-2a/",
        "aws:///ap-northeast-2a/not-an-instance",
    ],
)
def test_resolve_instance_id_rejects_bad_ids(provider_id):
    with pytest.raises(InstanceIdentityError):
        resolve_instance_id(provider_id)


async def test_terminate_calls_ec2():
    ec2 = MagicMock()
    terminator = InstanceTerminator(region="ap-northeast-2", ec2_client=ec2)

    await terminator.terminate("i-0123456789abcdef0")

    ec2.terminate_instances.assert_called_once_with(InstanceIds=["i-0123456789abcdef0"])


async def test_terminate_wraps_client_error():
    ec2 = MagicMock()
    ec2.terminate_instances.side_effect = ClientError(
        {"Error": {"Code": "UnauthorizedOperation", "Message": "not allowed"}}, "TerminateInstances"
    )
    terminator = InstanceTerminator(region="ap-northeast-2", ec2_client=ec2)

    with pytest.raises(TerminationError, match="UnauthorizedOperation"):
        await terminator.terminate("i-0123456789abcdef0")


def test_client_created_lazily_for_region(mocker):
    boto_client = mocker.patch("kubedrain.core.terminator.boto3.client")
    terminator = InstanceTerminator(region="eu-west-1")

    boto_client.assert_not_called()
    terminator._ensure_client()
    boto_client.assert_called_once_with("ec2", region_name="eu-west-1")
