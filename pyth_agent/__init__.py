"""
pyth_agent/ — Runs price battles off the Pyth pull oracle.

Pulls fresh price updates from the Hermes price service, opens and closes
battles with them through battle_core.engine, and writes state snapshots
that status.py and the dashboard read.
"""
