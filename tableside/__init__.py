"""
                Tableside Ordering

Order lifecycle and realtime synchronisation for a single restaurant:
carts become orders, repeat submissions merge into the open order of a
table, and kitchen, waiter, admin and customer screens stay in step
through pushed events backed by a local cache.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
