# volcache/cli/commands: Command modules for the volcache CLI.
#
# Each module in this package provides one CLI command.

from .restore import restore
from .snapshot import snapshot

__all__ = [
    "restore",
    "snapshot",
]
