"""lspharness - drive framed JSON-RPC stdio peers and run process batches in parallel."""

from loguru import logger

__version__ = "0.1.0"
__logo__ = "⚙"

# Library code stays silent until an application (the CLI) enables it.
logger.disable("lspharness")
