#!/usr/bin/env python3
"""Run the drill gauntlet API server."""

import os

import uvicorn


def main():
    port = int(os.environ.get('PORT', 8000))
    print("Starting Drill Gauntlet API server...")
    print(f"API documentation available at: http://localhost:{port}/docs")
    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=port,
        reload=os.environ.get('GAUNTLET_RELOAD', '1') == '1'
    )


if __name__ == "__main__":
    main()
