# __init__.py

"""Migration suggestions for Proxmox VE clusters."""

__version__ = "0.1.0"
