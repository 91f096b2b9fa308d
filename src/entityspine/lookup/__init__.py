"""
entityspine.lookup - reference strings and their resolution.

:class:`UriReferenceCodec` reads and writes references; lookup
directives say which reference fields to inline; :class:`LookupResolver`
inlines them, recursively and in batches.
"""

from entityspine.lookup.directives import LookupDirective, LookupScope, parse_directives
from entityspine.lookup.references import RecordReference, ReferenceCodec, UriReferenceCodec
from entityspine.lookup.resolver import LookupResolver

__all__ = [
    "LookupDirective",
    "LookupScope",
    "parse_directives",
    "RecordReference",
    "ReferenceCodec",
    "UriReferenceCodec",
    "LookupResolver",
]
