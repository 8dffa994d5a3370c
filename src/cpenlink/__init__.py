"""
CPen link - BLE security token access and credentialed file transfer.

Pairs with a CPen over Bluetooth Low Energy, reads its rotating one-time
code and device identifier, and uses them as bearer credentials for
resumable chunked transfers to a storage service.
"""

__version__ = "0.1.0"
