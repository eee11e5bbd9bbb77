"""
Core modules for Claude Usage Guard.

This package contains tier limits, threshold learning, usage analysis,
alert gating and the monitor service that ties them together.
"""
