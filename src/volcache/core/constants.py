"""Global constants for volcache.

Tag keys are part of the on-cloud data format: snapshots written by one
release must stay discoverable by the next, so changing any of them
orphans every existing cache lineage.
"""

from pathlib import Path

# =============================================================================
# Resource tags
# =============================================================================

SNAPSHOT_BRANCH_TAG_KEY = "runs-on-snapshot-branch"
"""Tag holding ``<format version>-<git ref>``."""

SNAPSHOT_REPOSITORY_TAG_KEY = "runs-on-snapshot-repository"
"""Tag holding the ``owner/name`` repository identifier."""

NAME_TAG_KEY = "Name"
"""Human-readable resource name shown in the EC2 console."""

DEFAULT_CACHE_VERSION = "v1"
"""Cache format version used when none is configured."""

BRANCH_NAME_MAX_CHARS = 40
"""Length cap for the branch component of generated resource names."""

RESOURCE_NAME_TIME_FORMAT = "%Y%m%d-%H%M%S"

# =============================================================================
# Default volume specification
# =============================================================================

DEFAULT_VOLUME_SIZE_GIB = 40
DEFAULT_VOLUME_TYPE = "gp3"
DEFAULT_VOLUME_IOPS = 3000
DEFAULT_VOLUME_THROUGHPUT_MIBPS = 125
DEFAULT_VOLUME_INITIALIZATION_RATE_MIBPS = 300
"""Provisioned initialization rate for volumes cloned from a snapshot."""

DEFAULT_REQUESTED_DEVICE = "/dev/sdf"
"""Device hint passed to AttachVolume; the kernel may expose another path."""

DEFAULT_FILESYSTEM = "ext4"

EBS_DEVICE_MODEL = "Amazon Elastic Block Store"
"""``lsblk`` MODEL column value of EBS volumes on Nitro instances."""

# =============================================================================
# Wait budgets (seconds)
# =============================================================================

VOLUME_AVAILABLE_TIMEOUT_SECONDS = 300.0
VOLUME_IN_USE_TIMEOUT_SECONDS = 300.0
SNAPSHOT_COMPLETED_TIMEOUT_SECONDS = 600.0

VOLUME_POLL_INTERVAL_SECONDS = 3.0
SNAPSHOT_POLL_INTERVAL_SECONDS = 5.0

COMMAND_TIMEOUT_SECONDS = 300.0
"""Default timeout for one host command (mkfs on a large device is the slowest)."""

# =============================================================================
# Host paths
# =============================================================================

DEFAULT_STATE_DIR = Path("/runs-on")
"""Directory holding one volume info record per mount point."""

RUNNER_CONFIG_FILENAME = "config.json"
"""Runner config file inside ``$RUNS_ON_HOME``."""

# =============================================================================
# Logging
# =============================================================================

COMMAND_OUTPUT_LOG_LIMIT = 400
"""Command output longer than this is truncated in logs."""

COMMAND_OUTPUT_LOG_HEAD = 200
"""Characters kept from truncated command output."""
