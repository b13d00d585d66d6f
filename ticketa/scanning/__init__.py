"""
Driver ticket scanning.

- scan_service.py: validates a code against the ticket state machine and writes
  the scan audit trail
- debounce.py: per-device suppression of repeated camera decodes
- router.py: manual/QR scan endpoint, scan history and the scanner websocket
"""
