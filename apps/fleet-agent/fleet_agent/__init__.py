"""
Fleet Agent
===========

The daemon that keeps a fleet of wallet identities online as workers of a
remote orchestrator.

What it does, per wallet:
  1. Obtain an auth token (retrying until the auth endpoint answers)
  2. Resolve the remote account id
  3. Open a websocket to the orchestrator, REGISTER, then HEARTBEAT every 30s
  4. Reconnect 30s after any disconnect, for as long as the process runs
  5. Claim the daily reward and medal tiers every 12h
  6. Log heartbeat/point totals every 5 minutes

Each wallet can be pinned to its own outbound proxy (proxy.txt line
index mod proxy count). Wallet state lives in a flat data.json.

Requirements:
  pip install requests websockets schedule

Usage:
  python -m fleet_agent.agent [--config fleet.json] [--use-proxy | --no-proxy]
"""
