"""Test suite for npm_ioc_scan.

This package contains unit and integration tests for all npm_ioc_scan modules:
- test_iocs: Static table, feed parsing, fetch failures and table merging
- test_roots: Provider strategies, glob expansion and root de-duplication
- test_walker: Depth bounds, pruning, symlink cycles and the time window
- test_manifest / test_lockfiles / test_matcher: Artifact readers and matching
- test_report: CSV/JSON serialisation and report writing
- test_scanner: End-to-end scans against fixture homes and global prefixes
- test_cli / test_renderer: Command-line entry point and terminal output
"""
