"""
Operating system detection utilities.
"""

import os
import sys


def is_windows() -> bool:
    """Whether the current interpreter runs on Windows."""
    return sys.platform == "win32"


def is_admin() -> bool:
    """
    Check if the current process has administrative privileges.

    Returns:
        bool: True if running with admin/root privileges, False otherwise.
    """
    if is_windows():
        import ctypes
        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except OSError:
            return False
    else:
        # Unix-like systems
        return os.geteuid() == 0
