#!/usr/bin/env python3

"""
Proxmox VM Balancer runner script.
Allows direct execution without installation.
"""

import sys
import os

# Make the package importable from a checkout
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

try:
    from proxmox_balancer.cli import main
except ImportError as e:
    print(f"Error importing package: {e}")
    print(f"Python path: {sys.path}")
    sys.exit(1)

if __name__ == "__main__":
    sys.exit(main())
