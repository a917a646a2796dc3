"""BankBot models package.

Defines the shared data contracts used across the gate, the relay and the
HTTP layer:

  - scan.py       — Verdict, ScanOutcome, ScanTicket (poll-to-completion gate)
  - events.py     — RelayEventKind, RelayEvent (streaming relay) + SSE encoding
  - responses.py  — HTTP response builders for rejection / missing file / internal fault
"""
