"""Pipeline orchestration core.

Why no broker?
~~~~~~~~~~~~~~
Pipeline throughput is dozens of jobs a day, each stage running for seconds
to minutes against a paid content-generation service. The hard problems are
spend governance, approval gating, and crash recovery, not message delivery.
All coordination goes through one SQLite job store: a claim is a single
conditional update, approval and recovery are periodic passes over the same
rows, and every transition lands in the audit log next to the data it
describes.
"""
