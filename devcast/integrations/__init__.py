"""External service clients: GitHub, Telegram and Twitter/X."""
from .github import GitHubClient, RepositoryContext
from .telegram import TelegramTransport, parse_update
from .twitter import Tweet, TwitterClient

__all__ = [
    "GitHubClient",
    "RepositoryContext",
    "TelegramTransport",
    "parse_update",
    "Tweet",
    "TwitterClient",
]
