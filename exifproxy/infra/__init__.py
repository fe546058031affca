"""Infrastructure layer - process-level access to external tools.

This layer contains:
- The exiftool line protocol and process handle
- Single-use and keep-alive proxies
- The process registry used for cleanup at exit

Allowed imports:
- config/ and utils/ modules
- External libraries (subprocess, psutil)

Date: 2026-10-19
"""
