#!/usr/bin/env python3

import argparse
import logging
import sys

from todoist_mcp.client import TodoistClientSingleton
from todoist_mcp.config import DEFAULT_DOTENV_DIR, config_summary, load_config, load_env_file
from todoist_mcp.errors import ConfigurationError

# Import the MCP instance
from todoist_mcp.mcp_instance import mcp

# --- Tool Registration --- #
# The @mcp.tool() decorators in these modules register functions
# with the imported 'mcp' instance.
from todoist_mcp.tools import bulk_tools  # noqa: F401
from todoist_mcp.tools import comment_tools  # noqa: F401
from todoist_mcp.tools import generic_tools  # noqa: F401
from todoist_mcp.tools import label_tools  # noqa: F401
from todoist_mcp.tools import project_tools  # noqa: F401
from todoist_mcp.tools import task_tools  # noqa: F401

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Todoist MCP server, specifying the directory for the .env file.")
    parser.add_argument(
        "--dotenv-dir",
        type=str,
        help=f"Path to the directory containing the .env file. Defaults to '{DEFAULT_DOTENV_DIR}'.",
        default=DEFAULT_DOTENV_DIR,
    )
    return parser.parse_args(argv)


# --- Main Execution Logic --- #
def main(argv=None):
    args = parse_args(argv)

    # stdout carries the stdio transport, so logs go to stderr.
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
    load_env_file(args.dotenv_dir)

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    logging.getLogger().setLevel(config.logging_level)
    logging.info(f"Loaded configuration: {config_summary(config)}")

    TodoistClientSingleton.initialize(config.api)
    logging.info("Starting Todoist MCP server on stdio")
    mcp.run(transport="stdio")


# --- Script Entry Point --- #
if __name__ == "__main__":
    main()
