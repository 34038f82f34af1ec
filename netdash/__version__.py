"""Version information for netdash."""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)

# Release information
__author__ = "NetDash Team"
__author_email__ = "team@netdash.dev"
__license__ = "MIT"
__url__ = "https://github.com/netdash/netdash"
__description__ = "Network diagnostics test engine with real-time progress streaming"
