"""
Operational tools for SpaceSync.

- sync_cli: store administration (migrate, inspect, health)
"""
