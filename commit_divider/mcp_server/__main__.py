import argparse
import logging
import sys
import asyncio
from commit_divider.mcp_server.server import create_server
from commit_divider.core.config import load_config


def main():
    parser = argparse.ArgumentParser(
        description="CommitDivider MCP Server - Semantic commit division for Jujutsu repositories",
        epilog="Example: python -m commit_divider.mcp_server --config custom.yaml"
    )
    parser.add_argument(
        "--config",
        help="Path to configuration YAML file (default: commitdivider.config.yaml)"
    )
    parser.add_argument("--repo-path", dest="repo_path", help="Default repository for single-repo tools")
    parser.add_argument("--repos-dir", dest="repos_dir", help="Directory holding repos.json for multi-repo tools")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default: INFO)")

    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, (args.log_level or "INFO").upper(), logging.INFO), stream=sys.stderr)

    # CLI values override the config file; None means "not given"
    cli_args = {k: v for k, v in vars(args).items() if v is not None and k != "config"}
    config = load_config(config_path=args.config, cli_args=cli_args)
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    server = create_server(config)
    logging.info(f"Server starting with config: {config.model_dump(mode='json')}")
    logging.info("Server running on stdio")
    try:
        asyncio.run(server.run_stdio_async())
    except KeyboardInterrupt:
        logging.info("Server stopped")


if __name__ == "__main__":
    main()
