"""
Fetch request model.

A fetch request is a closed set of named, optional attributes validated once at
construction. Unknown attributes, invalid ref names, and a commit hash without
a branch/tag context are all rejected here, before any I/O happens.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Literal, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InputValidationError

__all__ = [
    "GitInput",
    "to_url",
    "apply_overrides",
    "has_all_info",
    "BAD_GIT_REF",
    "REV_PATTERN",
    "SUPPORTED_URL_SCHEMES",
]

# Names git refuses as branch/tag names (see git-check-ref-format)
BAD_GIT_REF = re.compile(
    r"//|^[./]|/\.|\.\.|[\x00-\x20\x7f:?^~\[]|\\|\*|\.lock$|\.lock/|@\{|[/.]$|^@$|^$"
)

REV_PATTERN = re.compile(r"^[0-9a-f]{40}$")

# Store path names; no leading dot so names never hide in listings
STORE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9+\-_?=][A-Za-z0-9+\-._?=]*$")

SUPPORTED_URL_SCHEMES = ("git", "git+http", "git+https", "git+ssh", "git+file")


class GitInput(BaseModel):
    """
    A request to fetch a Git repository.

    Attribute names on the wire use camelCase (``allRefs``, ``lastModified``,
    ``revCount``, ``narHash``); Python code uses the snake_case field names.
    Instances are immutable; the pipeline returns enriched copies.
    """
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True, strict=True)

    type: Literal["git"] = Field(default="git", description="Input type")
    url: str = Field(..., description="Repository URL")
    ref: Optional[str] = Field(default=None, description="Branch or tag name")
    rev: Optional[str] = Field(default=None, description="Full 40-hex commit hash")
    shallow: Optional[bool] = Field(default=None, description="Accept shallow history")
    submodules: Optional[bool] = Field(default=None, description="Fetch submodules")
    all_refs: Optional[bool] = Field(default=None, alias="allRefs", description="Fetch every ref")
    last_modified: Optional[int] = Field(default=None, alias="lastModified", description="Commit timestamp")
    rev_count: Optional[int] = Field(default=None, alias="revCount", description="Number of ancestors")
    nar_hash: Optional[str] = Field(default=None, alias="narHash", description="SRI hash of the tree dump")
    name: Optional[str] = Field(default=None, description="Store path name")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not urlsplit(v).scheme:
            raise ValueError(f"URL '{v}' has no scheme")
        return v

    @field_validator("ref")
    @classmethod
    def validate_ref(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and BAD_GIT_REF.search(v):
            raise ValueError(f"invalid Git branch/tag name '{v}'")
        return v

    @field_validator("rev")
    @classmethod
    def validate_rev(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not REV_PATTERN.fullmatch(v):
            raise ValueError(f"invalid Git revision '{v}' (expected 40 lowercase hex digits)")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not STORE_NAME_PATTERN.fullmatch(v):
            raise ValueError(f"invalid store path name '{v}'")
        return v

    @model_validator(mode="after")
    def check_rev_has_ref(self) -> "GitInput":
        if self.rev is not None and self.ref is None:
            raise ValueError(f"Git input '{self.url}' has a commit hash but no branch/tag name")
        return self

    @classmethod
    def from_attrs(cls, attrs: Mapping[str, Any]) -> GitInput:
        """
        Build an input from an attribute bag.

        Args:
            attrs: Mapping using wire names (``type``, ``url``, ``ref``, ``allRefs`` ...)

        Returns:
            Validated GitInput

        Raises:
            InputValidationError: If a key is unknown or a value is invalid
        """
        if attrs.get("type", "git") != "git":
            raise InputValidationError(f"unsupported input type '{attrs.get('type')}'")
        try:
            return cls.model_validate(dict(attrs))
        except ValidationError as e:
            raise InputValidationError(_describe(e)) from e

    @classmethod
    def from_url(cls, url: str) -> GitInput:
        """
        Parse a ``git+<scheme>://`` URL into an input.

        ``ref`` and ``rev`` query parameters become attributes, ``shallow`` and
        ``submodules`` become booleans (``1`` means true); every other query
        parameter stays on the repository URL.

        Examples:
            >>> GitInput.from_url("git+https://example.org/repo?ref=main").ref
            'main'

        Raises:
            InputValidationError: If the scheme is not a Git scheme
        """
        parts = urlsplit(url)
        if parts.scheme not in SUPPORTED_URL_SCHEMES:
            raise InputValidationError(f"URL '{url}' is not a Git URL")

        scheme = parts.scheme[4:] if parts.scheme.startswith("git+") else parts.scheme
        attrs: Dict[str, Any] = {"type": "git"}
        rest = []
        for key, value in parse_qsl(parts.query, keep_blank_values=True):
            if key in ("rev", "ref"):
                attrs[key] = value
            elif key in ("shallow", "submodules"):
                attrs[key] = value == "1"
            else:
                rest.append((key, value))

        attrs["url"] = urlunsplit((scheme, parts.netloc, parts.path, urlencode(rest), ""))
        return cls.from_attrs(attrs)

    def get_name(self) -> str:
        """Name used for the resulting store path."""
        return self.name or "source"

    def to_attrs(self) -> Dict[str, Any]:
        """Return the attribute bag form, omitting unset attributes."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_url(self) -> str:
        return to_url(self)

    def __str__(self) -> str:
        return self.to_url()


def to_url(input: GitInput) -> str:
    """
    Render an input as a URL with ref, rev, and shallow encoded in the query.

    Examples:
        >>> to_url(GitInput(url="https://example.org/r", ref="main"))
        'git+https://example.org/r?ref=main'
    """
    parts = urlsplit(input.url)
    scheme = parts.scheme if parts.scheme == "git" else f"git+{parts.scheme}"
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if input.rev:
        query["rev"] = input.rev
    if input.ref:
        query["ref"] = input.ref
    if input.shallow:
        query["shallow"] = "1"
    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(sorted(query.items())), ""))


def apply_overrides(input: GitInput, ref: Optional[str] = None, rev: Optional[str] = None) -> GitInput:
    """
    Return a copy of input with ref and/or rev replaced.

    Raises:
        InputValidationError: If an override is invalid or the result has a rev but no ref
    """
    attrs = input.to_attrs()
    if rev is not None:
        attrs["rev"] = rev
    if ref is not None:
        attrs["ref"] = ref
    return GitInput.from_attrs(attrs)


def has_all_info(input: GitInput) -> bool:
    """
    Whether the input already carries everything a fetch would add.

    Requires lastModified; revCount is also required unless the input is
    shallow or has no ref (a possibly dirty working tree).
    """
    maybe_dirty = input.ref is None
    return input.last_modified is not None and (
        bool(input.shallow) or maybe_dirty or input.rev_count is not None
    )


def _describe(error: ValidationError) -> str:
    """Flatten a pydantic error into one readable line."""
    messages = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        msg = item.get("msg", "invalid value")
        if item.get("type") == "extra_forbidden":
            msg = f"unsupported Git input attribute '{loc}'"
        elif loc:
            msg = f"{loc}: {msg}"
        messages.append(msg)
    return "; ".join(messages)
