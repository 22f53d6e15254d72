"""npm_ioc_scan - Audit installed npm packages against known-compromised versions.

This package scans a host's installed JavaScript package trees and lockfiles
for (package, version) pairs listed as indicators of compromise:
- Global install prefixes, Homebrew Cellar and nvm/asdf toolchains
- node_modules trees under user home directories
- package-lock.json, yarn.lock and pnpm-lock.yaml files

Every run writes a CSV and a JSON report with identical findings and exposes
a boolean outcome the caller can turn into an exit status.

Public API:
    __version__: Current package version string
    __all__: Exported public symbols

Example usage::

    from npm_ioc_scan.config import ScanConfig
    from npm_ioc_scan.scanner import scan_host

    result = scan_host(ScanConfig.static_variant())
    print(result.compromised)
"""

__version__ = "0.1.0"
__author__ = "npm-ioc-scan contributors"
__license__ = "MIT"

__all__ = ["__version__", "__author__", "__license__"]
