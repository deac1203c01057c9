#!/usr/bin/env python3
"""
Contract Ledger Entry Point

Starts the FastAPI server with the contract ledger engine.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from contract_ledger.api import run_server
from contract_ledger.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("📒 Starting Contract Ledger...")
    print("💰 All money math uses Decimal precision")
    print(f"🌐 API available at: http://localhost:{settings.api_port}")
    print(f"📚 Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Contract Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
