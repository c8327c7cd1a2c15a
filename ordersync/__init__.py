"""
                Restaurant Order Sync

Client-side order-lifecycle synchronization for QR table ordering:
keeps the customer tracker, kitchen queue and admin dashboard in step
with the backend, and persists carts per table between QR scans.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
