"""Execution pipeline for the orchestrator.

This package contains the core workspace lifecycle components:

- **resolver**: Template validation and variable resolution (overrides + defaults -> resolved mapping)
- **render**: Resource graph rendering (Jinja2 over variables and workspace metadata)
- **engine**: Infrastructure engine protocol (in-memory and HTTP implementations)
- **driver**: Provisioning driver (create / update / destroy against the engine)
- **handshake**: Agent handshake tracker (token check, connect and startup deadlines)
- **apps**: App registry (slug-unique endpoints of ready agents)
- **coordinator**: Workspace orchestration (resolve -> provision -> handshake -> apps)
"""
