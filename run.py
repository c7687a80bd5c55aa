#!/usr/bin/env python3
"""
Lending Ledger Entry Point

Starts the FastAPI server with host and port taken from configuration.
"""

import sys

from lending_ledger.config import get_config
from lending_ledger.api import run_server


if __name__ == "__main__":
    config = get_config()
    print("Starting Lending Ledger...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Lending Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
