from . import grid, occupancy, placement, registry, service

__all__ = ["grid", "occupancy", "placement", "registry", "service"]
