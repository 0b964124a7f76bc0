"""Host-side operations: commands, devices, filesystems and services."""
