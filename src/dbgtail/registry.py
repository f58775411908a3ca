from __future__ import annotations

import sys

from .config import DEFAULT_REGISTRY_KEY


class RegistryStore:
    """The HKCU key DebugView persists its window/filter settings under.

    Only Windows has one; elsewhere clear() is a no-op.
    """

    def __init__(self, key: str = DEFAULT_REGISTRY_KEY) -> None:
        self.key = key

    def clear(self) -> bool:
        """Delete the key and its subkeys. Returns False when nothing was there."""
        if sys.platform != "win32":
            return False
        import winreg

        try:
            _delete_tree(winreg.HKEY_CURRENT_USER, self.key)
        except FileNotFoundError:
            return False
        return True


def _delete_tree(root, subkey: str) -> None:
    import winreg

    with winreg.OpenKey(root, subkey, 0, winreg.KEY_ALL_ACCESS) as handle:
        while True:
            try:
                child = winreg.EnumKey(handle, 0)
            except OSError:
                break
            _delete_tree(root, f"{subkey}\\{child}")
    winreg.DeleteKey(root, subkey)
