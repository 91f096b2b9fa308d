"""
entityspine.sets - the scope-predicate language.

A scope is a tree of named set terms (``actives``, ``publics``,
``owners{userIds}`` ...) joined by ``and`` / ``or`` groups. It is parsed
into a :class:`ScopeSpec`, compiled into a ``where`` predicate by
:func:`compile_scope`, and evaluated in process by :func:`matches`.
"""

from entityspine.sets.compiler import TERMS, compile_scope, merge_where
from entityspine.sets.matcher import MISSING, OPERATORS, get_path, matches
from entityspine.sets.query import interpolate, parse_query
from entityspine.sets.spec import Identities, ScopeSpec, SetGroup, SetTerm

__all__ = [
    "TERMS",
    "compile_scope",
    "merge_where",
    "MISSING",
    "OPERATORS",
    "get_path",
    "matches",
    "interpolate",
    "parse_query",
    "Identities",
    "ScopeSpec",
    "SetGroup",
    "SetTerm",
]
