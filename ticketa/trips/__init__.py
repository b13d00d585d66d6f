"""
Trips: search, seat maps, trip status and boarding progress.

A trip is one dated run of a recurring schedule. This package also owns the
live ticket feed (websocket.py) that boarding dashboards subscribe to.
"""
