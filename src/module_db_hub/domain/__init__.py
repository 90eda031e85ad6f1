"""Domain layer: module provisioning rules."""
