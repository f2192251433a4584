"""SCIM 2.0 → provisioning payload transformations.

This module turns inbound SCIM User resources (RFC 7643) and PatchOp
requests (RFC 7644 §3.5.2) into the flat, Graph-oriented attribute
representation stored on queue records.

Usage:
    # SCIM User → normalized payload (full create)
    payload = ScimTransformer.scim_to_payload(scim_user)

    # SCIM PatchOp operations → canonical attribute map (partial update)
    attributes = ScimTransformer.normalize_patch(patch_request["Operations"])
"""
from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

SUPPORTED_PATCH_OPS = ("add", "replace", "remove")

# Canonical (Graph) attribute names
ATTR_PRINCIPAL_NAME = "userPrincipalName"
ATTR_GIVEN_NAME = "givenName"
ATTR_SURNAME = "surname"
ATTR_MAIL = "mail"
ATTR_ENABLED = "accountEnabled"

# Lower-cased SCIM path → canonical attribute
_STRING_PATHS = {
    "username": ATTR_PRINCIPAL_NAME,
    "name.givenname": ATTR_GIVEN_NAME,
    "name.familyname": ATTR_SURNAME,
}
_ACTIVE_PATH = "active"
_EMAILS_PREFIX = "emails"


@dataclass
class NormalizedPayload:
    """Flat identity payload persisted with each queue record.

    Only attributes actually supplied are populated; ``raw_patch`` carries
    the normalized attribute map of a partial update.
    """
    scim_id: Optional[str] = None
    external_id: Optional[str] = None
    user_name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    primary_email: Optional[str] = None
    active: Optional[bool] = None
    raw_patch: Optional[Dict[str, Any]] = None

    _JSON_KEYS = {
        "scim_id": "scimId",
        "external_id": "externalId",
        "user_name": "userName",
        "given_name": "givenName",
        "family_name": "familyName",
        "primary_email": "primaryEmail",
        "active": "active",
        "raw_patch": "rawPatch",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            json_key: getattr(self, attr)
            for attr, json_key in self._JSON_KEYS.items()
            if getattr(self, attr) is not None
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Any) -> "NormalizedPayload":
        """Build from a decoded payload; anything that is not a mapping yields an empty payload."""
        if not isinstance(data, dict):
            return cls()
        values = {attr: data.get(json_key) for attr, json_key in cls._JSON_KEYS.items()}
        if not isinstance(values["active"], bool):
            values["active"] = None
        if not isinstance(values["raw_patch"], dict):
            values["raw_patch"] = None
        for attr in ("scim_id", "external_id", "user_name", "given_name", "family_name", "primary_email"):
            if values[attr] is not None and not isinstance(values[attr], str):
                values[attr] = str(values[attr])
        return cls(**values)


class ScimTransformer:
    """Transformer for inbound SCIM resources."""

    @staticmethod
    def extract_primary_email(emails: Any) -> Optional[str]:
        """Return the primary email value, or the first one if none is flagged primary.

        Example:
            >>> ScimTransformer.extract_primary_email([
            ...     {"value": "secondary@example.com"},
            ...     {"value": "primary@example.com", "primary": True},
            ... ])
            'primary@example.com'
        """
        if not isinstance(emails, list):
            return None
        entries = [e for e in emails if isinstance(e, dict) and isinstance(e.get("value"), str)]
        primary = next((e["value"] for e in entries if e.get("primary") is True), None)
        if primary:
            return primary
        return entries[0]["value"] if entries else None

    @staticmethod
    def scim_to_payload(scim_user: Dict[str, Any]) -> NormalizedPayload:
        """Convert a SCIM 2.0 User resource into a normalized create payload.

        Args:
            scim_user: SCIM User resource (already validated to carry userName)

        Returns:
            NormalizedPayload with ``active`` defaulting to True

        Example:
            >>> payload = ScimTransformer.scim_to_payload({
            ...     "userName": "bob@contoso.com",
            ...     "name": {"givenName": "Bob", "familyName": "Jones"},
            ...     "emails": [{"value": "bob@contoso.com", "primary": True}],
            ... })
            >>> payload.given_name, payload.active
            ('Bob', True)
        """
        name = scim_user.get("name")
        if not isinstance(name, dict):
            name = {}

        active = scim_user.get("active")
        if not isinstance(active, bool):
            active = _coerce_bool(active)

        return NormalizedPayload(
            scim_id=_string_or_none(scim_user.get("id")),
            external_id=_string_or_none(scim_user.get("externalId")),
            user_name=_string_or_none(scim_user.get("userName")),
            given_name=_string_or_none(name.get("givenName")),
            family_name=_string_or_none(name.get("familyName")),
            primary_email=ScimTransformer.extract_primary_email(scim_user.get("emails")),
            active=True if active is None else active,
        )

    @staticmethod
    def normalize_patch(operations: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
        """Normalize SCIM PatchOp operations into a canonical attribute map.

        Unsupported operation kinds and unknown paths are dropped; entries
        that resolve to null are removed. An empty result means the request
        carried no supported change.

        Example:
            >>> ScimTransformer.normalize_patch([
            ...     {"op": "Replace", "path": "active", "value": "False"},
            ...     {"op": "replace", "path": "title", "value": "CTO"},
            ... ])
            {'accountEnabled': False}
        """
        patch: Dict[str, Any] = {}

        for operation in operations or []:
            if not isinstance(operation, dict):
                continue
            op = str(operation.get("op") or "").lower()
            if op not in SUPPORTED_PATCH_OPS:
                continue

            value = operation.get("value")
            path = operation.get("path")
            if not path:
                if isinstance(value, dict):
                    for sub_path, sub_value in _flatten(value):
                        _map_patch_value(patch, sub_path, sub_value)
                continue

            _map_patch_value(patch, str(path), value)

        return {key: value for key, value in patch.items() if value is not None}


def _map_patch_value(patch: Dict[str, Any], path: str, value: Any) -> None:
    """Store ``value`` under the canonical key for ``path`` (last write wins)."""
    path = path.strip().lower()

    if path in _STRING_PATHS:
        patch[_STRING_PATHS[path]] = value if isinstance(value, str) else None
    elif path == _ACTIVE_PATH:
        patch[ATTR_ENABLED] = _coerce_bool(value)
    elif path.startswith(_EMAILS_PREFIX):
        if isinstance(value, str):
            patch[ATTR_MAIL] = value
        else:
            patch[ATTR_MAIL] = ScimTransformer.extract_primary_email(value)


def _flatten(value: Dict[str, Any], prefix: str = "") -> List[tuple[str, Any]]:
    """Expand a path-less patch value into (dotted path, value) pairs."""
    pairs: List[tuple[str, Any]] = []
    for key, item in value.items():
        path = f"{prefix}{key}"
        if isinstance(item, dict):
            pairs.extend(_flatten(item, prefix=f"{path}."))
        else:
            pairs.append((path, item))
    return pairs


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None
