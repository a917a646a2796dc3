"""Poll-to-completion gate.

Submits a staged file to the verdict service (client.py) and polls it to a
single terminal ScanOutcome (poller.py). The gate never raises.
"""
