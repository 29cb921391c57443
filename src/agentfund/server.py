#!/usr/bin/env python3
"""
agentfund server — Run the marketplace API with uvicorn.

    agentfund-server --host 0.0.0.0 --port 8000 --db agentfund.db

Everything not given on the command line comes from the environment
(see agentfund.config.MarketConfig.from_env).
"""

import argparse
import os
from typing import Optional


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentfund-server",
        description="AgentFund crowdfunding marketplace API",
    )
    parser.add_argument("--host", default=os.environ.get("AGENTFUND_HOST", "0.0.0.0"),
                        help="Bind address")
    parser.add_argument("--port", type=int, default=int(os.environ.get("AGENTFUND_PORT", "8000")),
                        help="Bind port")
    parser.add_argument("--db", help="SQLite database path (overrides AGENTFUND_DB; empty = in-memory)")
    parser.add_argument("--log-level", default=os.environ.get("AGENTFUND_LOG_LEVEL", "info"),
                        choices=["debug", "info", "warning", "error"], help="Log level")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if args.db is not None:
        os.environ["AGENTFUND_DB"] = args.db
    os.environ["AGENTFUND_LOG_LEVEL"] = args.log_level.upper()

    import uvicorn
    from agentfund.api import create_app
    from agentfund.config import MarketConfig
    from agentfund.market import Marketplace

    market = Marketplace.from_config(MarketConfig.from_env())
    app = create_app(market)
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)
    finally:
        market.close()


if __name__ == "__main__":
    main()
