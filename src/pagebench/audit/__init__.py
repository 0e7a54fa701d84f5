"""Audit subsystem for pagebench.

Runs repeated Lighthouse performance audits of pages under named
throttling profiles, persists every raw report, and summarizes the
numeric audit metrics of each (page, profile) combination.
"""
