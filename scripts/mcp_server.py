#!/usr/bin/env python3
"""
Launcher script for the Kubernetes MCP Server.

Starts the server on the transport selected by MCP_TRANSPORT (stdio by
default). It can be used as the command in MCP configuration files.
"""

import os
import sys

# Add the project root to the Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from k8s_mcp.main import run

if __name__ == "__main__":
    run()
