"""Internship placement application.

This package holds the placement workflow of the medstage backend: the
internship and application state machines, doctor evaluations and the
notification ledger with its realtime fan-out.
"""
