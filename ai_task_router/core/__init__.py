"""
Core modules for AI Task Router.

This package contains candidate selection, decision parsing and
task execution with bounded fallback.
"""
