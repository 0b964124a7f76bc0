"""Amazon EC2 (EBS) implementation of the block-storage API.

boto3 is synchronous; each call runs in a worker thread via
``asyncio.to_thread`` so the event loop, and with it task cancellation,
stays responsive while a request is in flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import boto3
import botocore.session
from botocore.config import Config as BotoConfig
from botocore.credentials import (
    CredentialResolver,
    InstanceMetadataFetcher,
    InstanceMetadataProvider,
)
from botocore.exceptions import BotoCoreError, ClientError

from volcache.cloud.base import (
    AttachmentStatus,
    BlockStorageClient,
    Snapshot,
    SnapshotState,
    Volume,
    VolumeAttachment,
    VolumeRequest,
    VolumeState,
)
from volcache.core.errors import CloudOperationError, ConfigurationError
from volcache.core.logging import get_logger

_logger = get_logger("cloud.ec2")

T = TypeVar("T")

_RETRY_CONFIG = BotoConfig(retries={"max_attempts": 5, "mode": "standard"})


def create_ec2_client(region: str | None, use_instance_profile: bool = True) -> Any:
    """Create a boto3 EC2 client.

    With ``use_instance_profile`` the only credential source is the instance
    metadata service, so credentials exported by earlier workflow steps
    (``AWS_ACCESS_KEY_ID``, ``~/.aws``) cannot redirect the cache to
    another account.

    Raises:
        ConfigurationError: If botocore cannot build a client, most often
            because no region is configured.
    """
    try:
        if not use_instance_profile:
            return boto3.client("ec2", region_name=region, config=_RETRY_CONFIG)

        core_session = botocore.session.get_session()
        provider = InstanceMetadataProvider(
            iam_role_fetcher=InstanceMetadataFetcher(timeout=2, num_attempts=3)
        )
        core_session.register_component(
            "credential_provider", CredentialResolver(providers=[provider])
        )
        session = boto3.Session(botocore_session=core_session, region_name=region)
        return session.client("ec2", config=_RETRY_CONFIG)
    except BotoCoreError as e:
        raise ConfigurationError(
            f"Cannot create EC2 client (set RUNS_ON_AWS_REGION): {e}",
            operation="create_ec2_client",
        ) from e


def _tags_to_dict(raw: list[dict[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t.get("Value", "") for t in raw or []}


def _tag_specification(resource_type: str, tags: Mapping[str, str]) -> list[dict[str, Any]]:
    return [{
        "ResourceType": resource_type,
        "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
    }]


def _parse_volume(raw: dict[str, Any]) -> Volume:
    return Volume(
        id=raw["VolumeId"],
        size_gib=int(raw.get("Size", 0)),
        volume_type=raw.get("VolumeType", ""),
        availability_zone=raw.get("AvailabilityZone", ""),
        state=VolumeState(raw.get("State", "creating")),
        tags=_tags_to_dict(raw.get("Tags")),
        snapshot_id=raw.get("SnapshotId") or None,
        attachments=[
            VolumeAttachment(
                volume_id=a.get("VolumeId", raw["VolumeId"]),
                instance_id=a.get("InstanceId", ""),
                device=a.get("Device"),
                status=AttachmentStatus(a.get("State", "attaching")),
            )
            for a in raw.get("Attachments") or []
        ],
    )


def _parse_snapshot(raw: dict[str, Any]) -> Snapshot:
    start_time = raw.get("StartTime") or datetime.now(UTC)
    return Snapshot(
        id=raw["SnapshotId"],
        volume_id=raw.get("VolumeId"),
        volume_size_gib=int(raw.get("VolumeSize", 0)),
        state=SnapshotState(raw.get("State", "pending")),
        start_time=start_time,
        tags=_tags_to_dict(raw.get("Tags")),
        description=raw.get("Description", ""),
    )


class Ec2BlockStorageClient(BlockStorageClient):
    """EBS volumes and snapshots through the EC2 API."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_region(cls, region: str | None, use_instance_profile: bool = True) -> Ec2BlockStorageClient:
        return cls(create_ec2_client(region, use_instance_profile))

    async def _call(self, operation: str, resource_id: str | None, fn: Callable[..., T], **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            _logger.debug("ec2_call_failed", operation=operation, code=code, resource_id=resource_id)
            raise CloudOperationError(
                f"{operation} failed ({code}): {e}",
                operation=operation,
                resource_id=resource_id,
            ) from e
        except BotoCoreError as e:
            raise CloudOperationError(
                f"{operation} failed: {e}",
                operation=operation,
                resource_id=resource_id,
            ) from e

    async def find_snapshots(
        self,
        tags: Mapping[str, str],
        state: SnapshotState | None = SnapshotState.COMPLETED,
    ) -> list[Snapshot]:
        filters = [{"Name": f"tag:{k}", "Values": [v]} for k, v in tags.items()]
        if state is not None:
            filters.append({"Name": "status", "Values": [state.value]})

        def _collect() -> list[dict[str, Any]]:
            paginator = self._client.get_paginator("describe_snapshots")
            found: list[dict[str, Any]] = []
            for page in paginator.paginate(OwnerIds=["self"], Filters=filters):
                found.extend(page.get("Snapshots", []))
            return found

        raw = await self._call("DescribeSnapshots", None, _collect)
        return [_parse_snapshot(s) for s in raw]

    async def describe_snapshot(self, snapshot_id: str) -> Snapshot:
        response = await self._call(
            "DescribeSnapshots",
            snapshot_id,
            self._client.describe_snapshots,
            SnapshotIds=[snapshot_id],
        )
        snapshots = response.get("Snapshots", [])
        if not snapshots:
            raise CloudOperationError(
                f"Snapshot {snapshot_id} not found",
                operation="DescribeSnapshots",
                resource_id=snapshot_id,
            )
        return _parse_snapshot(snapshots[0])

    async def create_snapshot(
        self,
        volume_id: str,
        tags: Mapping[str, str],
        description: str,
    ) -> Snapshot:
        response = await self._call(
            "CreateSnapshot",
            volume_id,
            self._client.create_snapshot,
            VolumeId=volume_id,
            Description=description,
            TagSpecifications=_tag_specification("snapshot", tags),
        )
        return _parse_snapshot(response)

    async def create_volume(self, request: VolumeRequest) -> Volume:
        kwargs: dict[str, Any] = {
            "AvailabilityZone": request.availability_zone,
            "VolumeType": request.volume_type,
            "TagSpecifications": _tag_specification("volume", request.tags),
        }
        if request.snapshot_id:
            kwargs["SnapshotId"] = request.snapshot_id
            if request.initialization_rate_mibps:
                kwargs["VolumeInitializationRate"] = request.initialization_rate_mibps
        if request.size_gib is not None:
            kwargs["Size"] = request.size_gib
        if request.iops is not None:
            kwargs["Iops"] = request.iops
        if request.throughput_mibps is not None:
            kwargs["Throughput"] = request.throughput_mibps

        response = await self._call(
            "CreateVolume",
            request.snapshot_id,
            self._client.create_volume,
            **kwargs,
        )
        return _parse_volume(response)

    async def describe_volume(self, volume_id: str) -> Volume:
        response = await self._call(
            "DescribeVolumes",
            volume_id,
            self._client.describe_volumes,
            VolumeIds=[volume_id],
        )
        volumes = response.get("Volumes", [])
        if not volumes:
            raise CloudOperationError(
                f"Volume {volume_id} not found",
                operation="DescribeVolumes",
                resource_id=volume_id,
            )
        return _parse_volume(volumes[0])

    async def delete_volume(self, volume_id: str) -> None:
        await self._call(
            "DeleteVolume",
            volume_id,
            self._client.delete_volume,
            VolumeId=volume_id,
        )

    async def attach_volume(
        self,
        volume_id: str,
        instance_id: str,
        device: str,
    ) -> VolumeAttachment:
        response = await self._call(
            "AttachVolume",
            volume_id,
            self._client.attach_volume,
            VolumeId=volume_id,
            InstanceId=instance_id,
            Device=device,
        )
        return VolumeAttachment(
            volume_id=volume_id,
            instance_id=instance_id,
            device=response.get("Device", device),
            status=AttachmentStatus(response.get("State", "attaching")),
        )

    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        await self._call(
            "DetachVolume",
            volume_id,
            self._client.detach_volume,
            VolumeId=volume_id,
            InstanceId=instance_id,
        )
