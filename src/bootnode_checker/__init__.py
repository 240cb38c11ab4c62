"""
Bootnode reachability checker.

Each published bootnode is dialled by a disposable node process; whether a peer
connection appears within the per-check timeout is exported as textfile
metrics for the monitoring pipeline.
"""

__all__: list[str] = []
