#!/usr/bin/env python3
"""
Development server runner for the NL2SQL agent API.

Loads .env, then starts uvicorn with hot reloading on the src tree.
"""

import sys
from pathlib import Path

# Add the src directory to the Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from dotenv import load_dotenv

env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
    print(f"Loaded environment variables from {env_file}")
else:
    print(f"No .env file found at {env_file}")
    print("  Set LLM__OPENROUTER_API_KEY and DATABASES__<ID>__DATABASE_URL before asking questions")

if __name__ == "__main__":
    import uvicorn
    from nl2sql_agent.config import get_settings

    settings = get_settings()
    server_config = settings.server

    print("Starting NL2SQL agent development server...")
    print(f"  API Documentation: http://{server_config.host}:{server_config.port}/docs")
    print(f"  Health Check: http://{server_config.host}:{server_config.port}/health")
    print(f"  Connections: {', '.join(settings.databases) or 'none configured'}")
    print(f"  Default strategy: {settings.agent.default_strategy.value}")
    print()

    uvicorn.run(
        server_config.app_module,
        host=server_config.host,
        port=server_config.port,
        reload=server_config.reload,
        workers=server_config.workers,
        reload_dirs=[str(src_path)],
        log_config=None,  # Use our structured logging
        access_log=False  # Access logging happens in middleware
    )
