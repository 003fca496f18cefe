"""AI Provider Orchestrator

Routes capability-tagged AI requests across interchangeable backend providers
with fallback chains, retries, circuit breaking and response caching.
"""

from importlib.metadata import PackageNotFoundError, version

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

try:
    __version__ = version("ai-provider-orchestrator")
except PackageNotFoundError:
    # Running from a source checkout
    __version__ = "0.1.0"
__author__ = "AI Provider Orchestrator"
