"""Shared todo backlog: task store, queries, lifecycle and claim arbitration.

Workers never read-then-write task state. Every mutation is a single guarded
``UPDATE`` on the task row, so two sessions racing for the same task cannot both
win, and a crashed worker's claim is returned to ``pending`` by the liveness sweep
instead of being stranded.
"""
