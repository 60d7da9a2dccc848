"""Conda version ordering and version constraints.

A version is ``[epoch!]release[+local]``.  The release and local parts are
split into components on ``.`` (``_`` is treated the same), and every
component into numeric and alphabetic atoms, so ``1.2a3`` is
``[[1], [2, 'a', 3]]``.  Atoms order as::

    'dev' < other strings (lexicographic) < integers < 'post'

Missing atoms and components compare as ``0``, which makes ``1.0 == 1.0.0``
and ``1.1a1 < 1.1``.
"""

from __future__ import annotations

import re
from functools import lru_cache, total_ordering
from itertools import zip_longest
from typing import Callable

_Atom = tuple[int, int, str]
_Component = tuple[_Atom, ...]

_ZERO: _Atom = (2, 0, "")
_DEV: _Atom = (0, 0, "")
_POST: _Atom = (3, 0, "")

_VERSION_RE = re.compile(r"^[a-z0-9_.+!]+$")
_ATOM_RE = re.compile(r"\d+|[a-z]+")
_OPERATORS = (">=", "<=", "==", "!=", "~=", ">", "<", "=")


class InvalidVersion(ValueError):
    pass


class InvalidVersionSpec(ValueError):
    pass


def _atom(token: str) -> _Atom:
    if token.isdigit():
        return (2, int(token), "")
    if token == "dev":
        return _DEV
    if token == "post":
        return _POST
    return (1, 0, token)


def _split_components(text: str, source: str) -> tuple[_Component, ...]:
    components = []
    for part in text.replace("_", ".").split("."):
        if not part:
            raise InvalidVersion(f"'{source}' has an empty version component")
        atoms = [_atom(token) for token in _ATOM_RE.findall(part)]
        if atoms[0][0] != 2:
            atoms.insert(0, _ZERO)
        components.append(tuple(atoms))
    return tuple(components)


def _compare(a: tuple[_Component, ...], b: tuple[_Component, ...]) -> int:
    for ca, cb in zip_longest(a, b, fillvalue=()):
        for xa, xb in zip_longest(ca, cb, fillvalue=_ZERO):
            if xa != xb:
                return -1 if xa < xb else 1
    return 0


def _normalized(components: tuple[_Component, ...]) -> tuple[_Component, ...]:
    trimmed = []
    for component in components:
        atoms = list(component)
        while atoms and atoms[-1] == _ZERO:
            atoms.pop()
        trimmed.append(tuple(atoms))
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return tuple(trimmed)


@total_ordering
class Version:
    """A parsed conda version; comparisons follow conda's ordering."""

    __slots__ = ("source", "epoch", "release", "local")

    def __init__(self, source: str) -> None:
        text = source.strip().lower()
        if not text:
            raise InvalidVersion("empty version")
        if not _VERSION_RE.match(text):
            raise InvalidVersion(f"'{source}' contains invalid characters")

        epoch = 0
        if "!" in text:
            epoch_text, _, text = text.partition("!")
            if not epoch_text.isdigit() or "!" in text:
                raise InvalidVersion(f"'{source}' has an invalid epoch")
            epoch = int(epoch_text)

        release, _, local = text.partition("+")
        if "+" in local:
            raise InvalidVersion(f"'{source}' has more than one local version separator")

        self.source = source.strip()
        self.epoch = epoch
        self.release = _split_components(release, source)
        self.local = _split_components(local, source) if local else ()

    def _compare_to(self, other: Version) -> int:
        if self.epoch != other.epoch:
            return -1 if self.epoch < other.epoch else 1
        return _compare(self.release, other.release) or _compare(self.local, other.local)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare_to(other) == 0

    def __lt__(self, other: Version) -> bool:
        return self._compare_to(other) < 0

    def __hash__(self) -> int:
        return hash((self.epoch, _normalized(self.release), _normalized(self.local)))

    def truncated(self, length: int) -> Version:
        """Return a copy keeping only the first *length* release components."""
        copy = object.__new__(Version)
        copy.source = ".".join(self.source.split("+")[0].split(".")[:length])
        copy.epoch = self.epoch
        copy.release = self.release[:length]
        copy.local = ()
        return copy

    def startswith(self, prefix: Version) -> bool:
        """True if every release component of *prefix* equals ours."""
        if self.epoch != prefix.epoch:
            return False
        for index, component in enumerate(prefix.release):
            mine = self.release[index] if index < len(self.release) else ()
            if _compare((mine,), (component,)) != 0:
                return False
        return True

    def __str__(self) -> str:
        return self.source

    def __repr__(self) -> str:
        return f"Version({self.source!r})"


@lru_cache(maxsize=65536)
def parse_version(text: str) -> Version:
    return Version(text)


_Predicate = Callable[[Version], bool]


def _strip_wildcard(text: str) -> tuple[str, bool]:
    if text.endswith(".*"):
        return text[:-2], True
    if text.endswith("*"):
        return text[:-1], True
    return text, False


def _predicate(constraint: str) -> _Predicate:
    if constraint in ("", "*"):
        return lambda version: True

    operator = next((op for op in _OPERATORS if constraint.startswith(op)), "")
    text, wildcard = _strip_wildcard(constraint[len(operator):].strip())
    if "*" in text:
        raise InvalidVersionSpec(f"'{constraint}' has a wildcard that is not at the end")
    try:
        bound = parse_version(text)
    except InvalidVersion as exc:
        raise InvalidVersionSpec(f"'{constraint}': {exc}") from exc

    if operator in ("", "==", "="):
        # A bare "=1.2" means 1.2.*, a bare "1.2" means exactly 1.2.
        if wildcard or operator == "=":
            return lambda version: version.startswith(bound)
        return lambda version: version == bound
    if operator == "!=":
        if wildcard:
            return lambda version: not version.startswith(bound)
        return lambda version: version != bound
    if operator == "~=":
        if len(bound.release) < 2:
            raise InvalidVersionSpec(f"'{constraint}' needs at least two components")
        prefix = bound.truncated(len(bound.release) - 1)
        return lambda version: version >= bound and version.startswith(prefix)
    if operator == ">=":
        return lambda version: version >= bound
    if operator == "<=":
        return lambda version: version <= bound
    if operator == ">":
        return lambda version: version > bound
    return lambda version: version < bound


class VersionSpec:
    """A version constraint such as ``>=1.2,<2|3.*``.

    ``,`` binds tighter than ``|``.  Parentheses are not supported.
    """

    __slots__ = ("source", "_alternatives")

    def __init__(self, source: str) -> None:
        text = "".join(source.split())
        if "(" in text or ")" in text:
            raise InvalidVersionSpec(f"'{source}': parentheses are not supported")
        self.source = source.strip()
        self._alternatives = [
            [_predicate(constraint) for constraint in group.split(",")]
            for group in text.split("|")
        ]

    def match(self, version: Version) -> bool:
        return any(
            all(predicate(version) for predicate in group)
            for group in self._alternatives
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionSpec):
            return NotImplemented
        return self.source == other.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __str__(self) -> str:
        return self.source

    def __repr__(self) -> str:
        return f"VersionSpec({self.source!r})"
