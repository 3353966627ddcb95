"""Type aliases for JSON payloads and untrusted provider records."""

from __future__ import annotations

from typing import TypeAlias

JsonValue: TypeAlias = object
JsonObject: TypeAlias = dict[str, JsonValue]

# One item of a provider page before validation; may be any JSON value
RawProviderRecord: TypeAlias = object
