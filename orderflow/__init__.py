"""
                        Orderflow

Order lifecycle and live tracking backend for a food-ordering platform:
status state machine, append-only event trail, delivery assignment and
a real-time WebSocket channel for customers, restaurants and couriers.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
