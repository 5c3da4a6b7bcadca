"""Utility helpers for StudioPass.

Submodules:
- aws: R2 (S3-compatible) presigned GETs
- media_locator: reduce stored media locators to stream uids / object keys
"""

__all__: list[str] = []
