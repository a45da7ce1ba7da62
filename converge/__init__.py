"""converge — declarative convergence engine for cluster infrastructure."""

__version__ = "0.1.0"
