"""Item source providers for marksync.

Each provider implements the Provider ABC and handles:
- Authentication (OAuth2 through the AuthManager, or static credentials)
- Fetching the user's current items from the source API
- Deduplicating overlapping queries and mapping results to BookmarkItems

Available providers:
    GitHubProvider: open pull requests authored by / awaiting review from the user
    JiraProvider:   unresolved issues reported by / assigned to the user
"""

from marksync.providers.base import AuthResult, Provider
from marksync.providers.github import GitHubProvider
from marksync.providers.jira import JiraProvider

__all__ = [
    "AuthResult",
    "Provider",
    "GitHubProvider",
    "JiraProvider",
]

# Registry: provider_id → provider class
PROVIDER_CLASSES: dict[str, type[Provider]] = {
    "github": GitHubProvider,
    "jira": JiraProvider,
}


def get_provider_class(provider_id: str) -> type[Provider]:
    """Return the provider class for a given id.

    Raises:
        KeyError: If the provider_id is not registered.
    """
    if provider_id not in PROVIDER_CLASSES:
        raise KeyError(
            f"No provider registered for '{provider_id}'. "
            f"Available: {list(PROVIDER_CLASSES)}"
        )
    return PROVIDER_CLASSES[provider_id]
