"""Git hosting provider access (GitHub REST v3)."""

from .provider import BranchTip, ContentProvider, TreeEntry, GitHubProvider, to_json_text

__all__ = ["BranchTip", "ContentProvider", "TreeEntry", "GitHubProvider", "to_json_text"]
