# provisioner/__init__.py
# -*- coding: utf-8 -*-
"""
Unattended Windows update provisioning.

Runs an opaque update script on a remote machine, restarting it and
running the script again until the script reports that nothing is left
to install.
"""

__version__ = "0.1.0"
