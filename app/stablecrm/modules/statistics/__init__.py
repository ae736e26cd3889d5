"""Workload and revenue reporting over completed lessons."""
