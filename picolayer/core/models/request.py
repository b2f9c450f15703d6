"""
Package request — the input to one cache-preserving install.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

PPA_PREFIX = "ppa:"


def parse_csv(raw: str | None) -> list[str]:
    """Split a comma list, trimming items and dropping empty ones."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def normalize_ppa(repo: str) -> str:
    """Ensure an alt-repo identifier carries the ``ppa:`` prefix."""
    repo = repo.strip()
    return repo if repo.startswith(PPA_PREFIX) else f"{PPA_PREFIX}{repo}"


class PackageRequest(BaseModel):
    """Packages to install plus optional alt-repositories.

    Package order is preserved for the command line, duplicates are
    dropped. Every name is non-empty after trimming.
    """

    packages: list[str]
    alt_repos: list[str] = Field(default_factory=list)
    force_alt_repos_on_foreign_host: bool = False

    @field_validator("packages")
    @classmethod
    def _check_packages(cls, value: list[str]) -> list[str]:
        names: list[str] = []
        for raw in value:
            name = raw.strip()
            if not name:
                raise ValueError("package names must be non-empty")
            if name not in names:
                names.append(name)
        if not names:
            raise ValueError("at least one package is required")
        return names

    @field_validator("alt_repos")
    @classmethod
    def _normalize_alt_repos(cls, value: list[str]) -> list[str]:
        repos: list[str] = []
        for raw in value:
            if not raw.strip():
                continue
            repo = normalize_ppa(raw)
            if repo not in repos:
                repos.append(repo)
        return repos
